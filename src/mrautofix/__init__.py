"""mrautofix: GitLab merge request feedback triage with safe automatic fixes."""

__version__ = "0.1.0"
