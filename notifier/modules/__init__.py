"""Feature modules of the notification dispatch pipeline."""
