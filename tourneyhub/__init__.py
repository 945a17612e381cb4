"""Tournament organizing backend: teams, tournaments, registrations, notifications."""
