"""SQLite storage layer: ORM tables, engine policy and schema migrations."""
