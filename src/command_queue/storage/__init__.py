"""Database plumbing: engine policy, ORM tables and migrations."""
