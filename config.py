import os
from dotenv import load_dotenv

load_dotenv()

# Paths
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DATA_DIR = os.getenv("DATA_DIR", os.path.join(BASE_DIR, "data"))
QUESTION_BANK_PATH = os.getenv("QUESTION_BANK_PATH", os.path.join(DATA_DIR, "questions.json"))
SESSION_STORE_PATH = os.getenv("SESSION_STORE_PATH", os.path.join(DATA_DIR, "local_storage.json"))
RESULTS_DIR = os.getenv("RESULTS_DIR", os.path.join(DATA_DIR, "results"))
CASES_DIR = os.getenv("CASES_DIR", os.path.join(DATA_DIR, "cases"))
BOOKMARKS_PATH = os.getenv("BOOKMARKS_PATH", os.path.join(DATA_DIR, "bookmarks.json"))

# Quiz timing
SECONDS_PER_QUESTION = int(os.getenv("SECONDS_PER_QUESTION", "90"))
GRAND_TEST_MINUTES = int(os.getenv("GRAND_TEST_MINUTES", "180"))
MIN_QUESTIONS_TO_RECORD = int(os.getenv("MIN_QUESTIONS_TO_RECORD", "5"))

# Encounters
DANGLING_STEP_OUTCOME = os.getenv("DANGLING_STEP_OUTCOME", "success")
LLM_MODEL = os.getenv("LLM_MODEL", "llama3.2")
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.5"))
CASE_GENERATION_RETRIES = int(os.getenv("CASE_GENERATION_RETRIES", "3"))

# Daily challenge
DAILY_MCQ_SOURCE = os.getenv("DAILY_MCQ_SOURCE", "EPW Dams")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
