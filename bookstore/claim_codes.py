import secrets

# Letters and digits with I, O, 0 and 1 removed so codes read back unambiguously.
ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8


def generate_claim_code(length: int = CODE_LENGTH) -> str:
    """Return a random claim code. Uniqueness is checked by the caller."""
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def normalize_claim_code(claim_code: str) -> str:
    return claim_code.strip().upper()
