# signserver/config.py
from functools import lru_cache
from pathlib import Path
from typing import Optional
import os
import tempfile
from dotenv import load_dotenv

from signserver.core.errors import ConfigError

ROOT = Path(__file__).resolve().parents[1]

# Load in ascending precedence; later overrides earlier
load_dotenv(ROOT / ".env")
load_dotenv(ROOT / ".env.local", override=True)

DEFAULT_CERT_FILE = "/etc/signing-server/cert.crt"
DEFAULT_TRUSTED_PROXIES = "10.0.0.0/8,172.16.0.0/12,192.168.0.0/16,169.254.0.0/16"
SIGNER_NAMES = ("jsign", "osslsigncode")


def _opt(name: str) -> Optional[str]:
    val = (os.getenv(name) or "").strip()
    return val or None


class Settings:
    def __init__(self, **overrides):
        # Server
        self.HOST: str = os.getenv("HOST", "0.0.0.0")
        self.PORT: int = int(os.getenv("PORT", "80"))
        self.WORK_DIR: str = os.getenv("WORK_DIR", str(Path(tempfile.gettempdir()) / "signserver"))
        self.MAX_UPLOAD_MB: int = int(os.getenv("MAX_UPLOAD_MB", "1024"))
        self.TRUSTED_PROXIES: list[str] = [
            s.strip() for s in os.getenv("TRUSTED_PROXIES", DEFAULT_TRUSTED_PROXIES).split(",") if s.strip()
        ]
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

        # Auth
        self.REQUEST_KEY: str = os.getenv("REQUEST_KEY", "")

        # Jobs
        self.JOB_CLEANUP_DELAY: float = float(os.getenv("JOB_CLEANUP_DELAY", "300"))
        self.MAX_CONCURRENT_SIGNS: int = int(os.getenv("MAX_CONCURRENT_SIGNS", "4"))

        # Signer
        self.SIGNER: str = os.getenv("SIGNER", "jsign").strip().lower()
        self.SIGNER_PATH: Optional[str] = _opt("SIGNER_PATH")
        self.TOKEN_PIN: str = os.getenv("TOKEN_PIN", "")
        self.CERT_FILE: str = _opt("CERT_FILE") or DEFAULT_CERT_FILE
        self.STORE_TYPE: str = os.getenv("STORE_TYPE", "PIV")
        self.KEYSTORE: Optional[str] = _opt("KEYSTORE")
        self.KEY_ALIAS: Optional[str] = _opt("KEY_ALIAS")
        self.DIGEST: str = os.getenv("DIGEST", "sha384")
        self.TSA_URL: str = os.getenv("TSA_URL", "http://timestamp.sectigo.com")

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise TypeError(f"unknown setting {key}")
            setattr(self, key, value)

    @property
    def max_upload_bytes(self) -> int:
        return self.MAX_UPLOAD_MB * 1024 * 1024

    def validate(self) -> None:
        if not self.REQUEST_KEY:
            raise ConfigError("REQUEST_KEY is not set")
        if not self.WORK_DIR:
            raise ConfigError("WORK_DIR is not set")
        if not Path(self.CERT_FILE).is_file():
            raise ConfigError(f"certificate file {self.CERT_FILE} does not exist")
        if self.SIGNER not in SIGNER_NAMES:
            raise ConfigError(f"unknown SIGNER {self.SIGNER!r}; expected one of {', '.join(SIGNER_NAMES)}")
        if self.MAX_UPLOAD_MB <= 0 or self.MAX_CONCURRENT_SIGNS <= 0 or self.JOB_CLEANUP_DELAY <= 0:
            raise ConfigError("MAX_UPLOAD_MB, MAX_CONCURRENT_SIGNS and JOB_CLEANUP_DELAY must be positive")


@lru_cache
def get_settings() -> Settings:
    return Settings()
