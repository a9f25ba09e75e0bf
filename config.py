import os
from dotenv import load_dotenv

# Загрузка .env
load_dotenv()

# База данных
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///matrix_comp.db")

# Транзакции: повторы при конфликте записи
TRANSACTION_MAX_RETRIES = int(os.getenv("TRANSACTION_MAX_RETRIES", "5"))
TRANSACTION_BACKOFF_BASE = float(os.getenv("TRANSACTION_BACKOFF_BASE", "0.05"))  # секунды
TRANSACTION_BACKOFF_MAX = float(os.getenv("TRANSACTION_BACKOFF_MAX", "1.0"))

# Матрица
MATRIX_WIDTH = 3
SLOT_COOLING_OFF_DAYS = int(os.getenv("SLOT_COOLING_OFF_DAYS", "30"))

# Способы выплаты
PAYOUT_METHODS = ["cashapp", "paypal"]

# Категории аккаунтов
ACCOUNT_CATEGORIES = ["client", "barber"]

# Компенсационный план (используется, если в app_settings нет записи)
DEFAULT_COMPENSATION_SETTINGS = {
    "fast_start": {
        "level_1": 25,
        "level_2": 10,
        "level_3": 5,
    },
    "level_bonus": {
        "level_1": 25,
        "level_2": 10,
        "level_3": 5,
    },
    "matrix": {
        "per_placement": 50,
        "max_depth": 5,
        "level_percents": [10, 8, 5, 3, 2],
        "category_multipliers": {
            "client": 1,
            "barber": 2,
        },
    },
    "matching": {
        "level_1_percent": 10,
        "level_2_percent": 5,
        "level_3_percent": None,
        "category_overrides": {
            "barber": {
                "level_1_percent": 20,
                "level_2_percent": 10,
            },
        },
    },
    "minimum_payout": 50,
}

COMPENSATION_SETTINGS_KEY = "compensation_settings"
