from .draft_email import DRAFT_EMAIL_SCHEMA, DraftEmail, parse_draft_email, read_draft_output

__all__ = ["DRAFT_EMAIL_SCHEMA", "DraftEmail", "parse_draft_email", "read_draft_output"]
