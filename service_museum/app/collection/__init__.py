"""Collection queries and composite searches."""
