"""Auto-approve and auto-merge pull requests that only bump dependencies."""
