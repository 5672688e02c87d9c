import os

from dotenv import load_dotenv

load_dotenv()


def _int_list(value):
    return tuple(int(part) for part in value.split(",") if part.strip())


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///football_tickets.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # =========================
    # STADIUM LAYOUT
    # =========================
    STADIUM_ROWS = int(os.getenv("STADIUM_ROWS", 10))
    STADIUM_SEATS_PER_ROW = int(os.getenv("STADIUM_SEATS_PER_ROW", 20))
    STADIUM_VIP_ROWS = _int_list(os.getenv("STADIUM_VIP_ROWS", "3,4"))
    STADIUM_PREMIUM_ROWS = _int_list(os.getenv("STADIUM_PREMIUM_ROWS", "5,6,7"))

    # =========================
    # M-PESA
    # =========================
    MPESA_ENV = os.getenv("MPESA_ENV", "stub")
    MPESA_CONSUMER_KEY = os.getenv("MPESA_CONSUMER_KEY")
    MPESA_CONSUMER_SECRET = os.getenv("MPESA_CONSUMER_SECRET")
    MPESA_SHORTCODE = os.getenv("MPESA_SHORTCODE", "174379")
    MPESA_PASSKEY = os.getenv("MPESA_PASSKEY")
    MPESA_CALLBACK_URL = os.getenv("MPESA_CALLBACK_URL", "http://127.0.0.1:5000/mpesa/callback")
    MPESA_TIMEOUT = float(os.getenv("MPESA_TIMEOUT", 30))


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    MPESA_ENV = "stub"
    STADIUM_ROWS = 5
    STADIUM_SEATS_PER_ROW = 4
    STADIUM_VIP_ROWS = (3,)
    STADIUM_PREMIUM_ROWS = (2, 3)
