import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

# Varsayılan ödünç verme kuralları; LendingPolicy bunları kurulum başına geçersiz kılar
LOAN_DAYS = 14       # iade için gün sayısı
MAX_BORROW = 3       # bir üyenin aynı anda tutabileceği kitap sayısı
FINE_PER_DAY = 2     # gecikilen gün başına ceza (para birimi)


@dataclass
class Settings:
    # Veritabanı Ayarları
    db_file: str = os.getenv("LENDING_DB_FILE", "lending.db")
    db_busy_timeout: float = float(os.getenv("DB_BUSY_TIMEOUT", "5.0"))

    # Depo İşlem Ayarları
    tx_max_attempts: int = int(os.getenv("TX_MAX_ATTEMPTS", "5"))
    tx_retry_backoff: float = float(os.getenv("TX_RETRY_BACKOFF", "0.05"))

    # Ödünç Verme Kuralları
    loan_days: int = int(os.getenv("LOAN_DAYS", str(LOAN_DAYS)))
    max_borrow: int = int(os.getenv("MAX_BORROW", str(MAX_BORROW)))
    fine_per_day: int = int(os.getenv("FINE_PER_DAY", str(FINE_PER_DAY)))

    # API Ayarları
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Uygulama Ayarları
    app_name: str = os.getenv("APP_NAME", "Library Lending")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class LendingPolicy:
    """Motor ve ceza hesaplayıcı tarafından uygulanan ödünç alma kuralları."""

    loan_days: int = LOAN_DAYS
    max_borrow: int = MAX_BORROW
    fine_per_day: int = FINE_PER_DAY

    def __post_init__(self) -> None:
        if self.loan_days < 1:
            raise ValueError("loan_days must be at least 1.")
        if self.max_borrow < 1:
            raise ValueError("max_borrow must be at least 1.")
        if self.fine_per_day < 0:
            raise ValueError("fine_per_day cannot be negative.")

    @classmethod
    def from_settings(cls, config: "Settings") -> "LendingPolicy":
        return cls(
            loan_days=config.loan_days,
            max_borrow=config.max_borrow,
            fine_per_day=config.fine_per_day,
        )


settings = Settings()
