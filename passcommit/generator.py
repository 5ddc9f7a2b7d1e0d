"""Password, passphrase and PIN generators."""
import secrets

UPPERCASE = 'ABCDEFGHIJKLMNOPQRSTUVWXYZ'
LOWERCASE = 'abcdefghijklmnopqrstuvwxyz'
DIGITS = '0123456789'
SYMBOLS = '!@#$%^&*()_+-=[]{}|;:,.<>?'
AMBIGUOUS = 'l1IO0'

WORDS = (
    'apple', 'banana', 'cherry', 'dragon', 'eagle', 'forest', 'galaxy', 'harbor',
    'island', 'jungle', 'kitchen', 'lemon', 'mountain', 'november', 'ocean', 'planet',
    'queen', 'river', 'sunset', 'thunder', 'umbrella', 'valley', 'whisper', 'yellow',
    'zebra', 'anchor', 'bridge', 'castle', 'diamond', 'engine', 'falcon', 'garden',
    'helmet', 'igloo', 'jacket', 'koala', 'lantern', 'marble', 'ninja', 'orange',
    'penguin', 'quartz', 'rocket', 'silver', 'tiger', 'unicorn', 'violet', 'winter',
)


def _strip(chars: str) -> str:
    return ''.join(c for c in chars if c not in AMBIGUOUS)


def generate_password(
    length: int = 16,
    uppercase: bool = True,
    lowercase: bool = True,
    numbers: bool = True,
    symbols: bool = True,
    exclude_ambiguous: bool = False,
) -> str:
    """Generate a random password.

    Falls back to letters and digits when every character class is disabled.

    Raises:
        ValueError: If length is not positive.
    """
    if length < 1:
        raise ValueError("Password length must be positive")
    charset = ''
    if uppercase:
        charset += UPPERCASE
    if lowercase:
        charset += LOWERCASE
    if numbers:
        charset += DIGITS
    if exclude_ambiguous:
        charset = _strip(charset)
    if symbols:
        charset += SYMBOLS
    if not charset:
        charset = UPPERCASE + LOWERCASE + DIGITS
    return ''.join(secrets.choice(charset) for _ in range(length))


def generate_memorable_password(word_count: int = 4, separator: str = '-') -> str:
    """Capitalized random words joined by ``separator``, e.g. ``Tiger-Ocean``."""
    if word_count < 1:
        raise ValueError("word_count must be positive")
    return separator.join(
        secrets.choice(WORDS).capitalize() for _ in range(word_count)
    )


def generate_numeric_pin(length: int = 12) -> str:
    if length < 1:
        raise ValueError("PIN length must be positive")
    return ''.join(secrets.choice(DIGITS) for _ in range(length))
