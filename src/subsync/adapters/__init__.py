"""Infrastructure adapters (database, MailerLite, HTTP)."""
