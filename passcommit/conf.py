"""PassCommit constants.

Names of the keys used in the persistent key-value store and the
cryptographic parameters of a vault.
"""

# Storage keys
MASTER_SALT = 'masterSalt'
VAULT = 'vault'
PERSISTED_KEY = 'persistedVaultKey'
AUTH_STATE = 'authState'
REMOTE_IDS = 'remoteIds'

# Key derivation (OWASP recommended)
PBKDF2_ITERATIONS = 600_000
SALT_LENGTH = 16
IV_LENGTH = 12
KEY_LENGTH = 32  # AES-256

# Wrapped key validity (30 days)
KEY_TTL = 30 * 24 * 60 * 60

# Inactivity before the vault locks itself (5 minutes)
IDLE_TIMEOUT = 5 * 60

MIN_PASSWORD_LENGTH = 8

API_BASE_URL = 'http://localhost:3001/api'
