"""Application constants.

Password policy, token sizing, key-vault parameters and the names used for
degraded capabilities in saga results.
"""

# ---------------------------------------------------------------------------
# Password policy
# ---------------------------------------------------------------------------
PASSWORD_MIN_LENGTH: int = 8
PASSWORD_RULES: tuple[tuple[str, str], ...] = (
    (r"[A-Z]", "Password must contain at least one uppercase letter"),
    (r"[a-z]", "Password must contain at least one lowercase letter"),
    (r"[0-9]", "Password must contain at least one number"),
)

# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------
# secrets.token_urlsafe(32) -> 256 bits of entropy
TOKEN_BYTES: int = 32

# ---------------------------------------------------------------------------
# Clinical notes keys
# ---------------------------------------------------------------------------
DEK_BYTES: int = 32
KEY_OPERATIONS: list[str] = ["wrapKey", "unwrapKey"]
KEY_PURPOSE_TAG: str = "clinical-notes-dek-wrapping"

# ---------------------------------------------------------------------------
# FHIR
# ---------------------------------------------------------------------------
# Halaxy returns OperationOutcome entries mixed into search bundles
FHIR_PSEUDO_IDS: set[str] = {"warning", "error"}
FHIR_MIN_ID_LENGTH: int = 4

# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------
TOKEN_EXPIRY_BUFFER_SECONDS: int = 60

# ---------------------------------------------------------------------------
# Degraded capabilities reported in saga results
# ---------------------------------------------------------------------------
CAPABILITY_LICENSE: str = "license"
CAPABILITY_PMS_SUB_ROLE: str = "pms_sub_role"
CAPABILITY_NOTES: str = "clinical_notes"
CAPABILITY_EMAIL: str = "welcome_email"
# Identity created with a generated password; the practitioner must reset it
CAPABILITY_PASSWORD_RESET: str = "password_reset"

CONTRACT_VERSION: str = "1.0"
