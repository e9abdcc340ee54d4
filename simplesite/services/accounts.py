"""Account storage, username rules and permissions."""
import unicodedata
from collections.abc import Iterable

from sqlalchemy.orm import Session

from simplesite.models.account import Account, Permission
from simplesite.services.passwords import hash_password, verify_password

SEPARATORS = [" ", "\t", ".", "-", "_"]

# Copied from django-registration.
USERNAME_BLACKLIST = frozenset([
    # Hostnames with special/reserved meaning.
    "autoconfig",  # Thunderbird autoconfig
    "autodiscover",  # MS Outlook/Exchange autoconfig
    "broadcasthost",  # Network broadcast hostname
    "isatap",  # IPv6 tunnel autodiscovery
    "localdomain",  # Loopback
    "localhost",  # Loopback
    "wpad",  # Proxy autodiscovery
    # Common protocol hostnames.
    "ftp",
    "imap",
    "mail",
    "news",
    "pop",
    "pop3",
    "smtp",
    "usenet",
    "uucp",
    "webmail",
    "www",
    # Email addresses known used by certificate authorities during verification.
    "admin",
    "administrator",
    "hostmaster",
    "info",
    "is",
    "it",
    "mis",
    "postmaster",
    "root",
    "ssladmin",
    "ssladministrator",
    "sslwebmaster",
    "sysadmin",
    "webmaster",
    # RFC-2142-defined names not already covered.
    "abuse",
    "marketing",
    "noc",
    "sales",
    "security",
    "support",
    # Common no-reply email addresses.
    "mailer-daemon",
    "nobody",
    "noreply",
    "no-reply",
    # Sensitive filenames.
    "clientaccesspolicy.xml",  # Silverlight cross-domain policy file.
    "crossdomain.xml",  # Flash cross-domain policy file.
    "favicon.ico",
    "humans.txt",
    "keybase.txt",  # Keybase ownership-verification URL.
    "robots.txt",
    ".htaccess",
    ".htpasswd",
    # Other names which could be problems depending on URL/subdomain structure.
    "account",
    "accounts",
    "blog",
    "buy",
    "clients",
    "contact",
    "contactus",
    "contact-us",
    "copyright",
    "dashboard",
    "doc",
    "docs",
    "download",
    "downloads",
    "enquiry",
    "faq",
    "help",
    "inquiry",
    "license",
    "login",
    "logout",
    "me",
    "myaccount",
    "payments",
    "plans",
    "portfolio",
    "preferences",
    "pricing",
    "privacy",
    "profile",
    "register",
    "secure",
    "settings",
    "signin",
    "signup",
    "ssl",
    "status",
    "subscribe",
    "terms",
    "tos",
    "user",
    "users",
    "weblog",
    "work",
    ".well-known",
])


def normalize_username(username: str) -> str:
    """Normalized form of a username, used to detect look-alike names.

    Lowercases, drops separators, and strips combining marks after a
    compatibility decomposition.
    """
    username = username.lower()
    for separator in SEPARATORS:
        username = username.replace(separator, "")
    decomposed = unicodedata.normalize("NFKD", username)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return unicodedata.normalize("NFKC", stripped)


def is_username_blacklisted(username: str) -> bool:
    return username.lower() in USERNAME_BLACKLIST or normalize_username(username) in USERNAME_BLACKLIST


def set_password(account: Account, password: str) -> None:
    account.password, account.salt = hash_password(password)


def check_password(account: Account, password: str) -> bool:
    return verify_password(password, account.password)


def save_account(db: Session, account: Account) -> Account:
    """Insert or update an account. Unique violations surface on flush."""
    account.normalized_username = normalize_username(account.username)
    db.add(account)
    db.flush()
    return account


def load_account(db: Session, account_id: str) -> Account | None:
    return db.query(Account).filter(Account.id == account_id).first()


def load_account_by_username(db: Session, username: str) -> Account | None:
    return db.query(Account).filter(Account.username == username).first()


def load_account_by_email(db: Session, email: str) -> Account | None:
    return db.query(Account).filter(Account.email == email).first()


def load_permissions(db: Session, account_id: str) -> frozenset[str]:
    rows = db.query(Permission.permission).filter(Permission.id == account_id).all()
    return frozenset(row.permission for row in rows)


def save_permissions(db: Session, account_id: str, permissions: Iterable[str]) -> None:
    """Replace the permissions of an account."""
    db.query(Permission).filter(Permission.id == account_id).delete(synchronize_session=False)
    for name in sorted(set(permissions)):
        db.add(Permission(id=account_id, permission=name))
    db.flush()
