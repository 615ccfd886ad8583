"""Mirror canonical issues into GitHub or GitLab and reconcile their status"""

__version__ = "1.0.0"
