"""Study tracker: schedule/progress store with hybrid sync and weekly reports."""
