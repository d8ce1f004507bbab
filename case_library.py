import os
import json
import logging
from typing import List
from datetime import datetime

from errors import InvalidCaseData, PersistenceFailure
from encounter_engine import normalize_case
from models import EncounterCase

logger = logging.getLogger(__name__)

SAMPLE_CASES = [
    {
        "title": "Acute Chest Pain in 55-Year-Old Male",
        "source": "Case Library",
        "subject": "Medicine",
        "description": "A 55-year-old male presents to the emergency department with acute chest pain.",
        "steps": [
            {
                "title": "Initial Presentation",
                "prompt": "Crushing chest pain radiating to the left arm for 40 minutes, with sweating and nausea. "
                          "History of hypertension and smoking. BP 160/95 mmHg, HR 102 bpm, SpO2 94% on room air.",
                "action": "Choose first investigation",
                "options": [
                    {"label": "12-lead ECG", "nextStep": 1},
                    {"label": "Chest X-ray and wait", "nextStep": 99},
                    {"label": "Reassure and discharge", "nextStep": 99},
                ],
            },
            {
                "title": "ECG Findings",
                "prompt": "ST elevation in leads II, III and aVF with reciprocal depression in I and aVL.",
                "action": "Choose diagnosis",
                "options": [
                    {"label": "Inferior wall STEMI", "nextStep": 2},
                    {"label": "Acute pericarditis", "nextStep": 99},
                    {"label": "Stable angina", "nextStep": 99},
                ],
            },
            {
                "title": "Management",
                "prompt": "The nearest PCI-capable centre is 30 minutes away.",
                "action": "Choose definitive management",
                "options": [
                    {"label": "Aspirin, heparin and primary PCI", "nextStep": 100},
                    {"label": "Sublingual nitrate and observe", "nextStep": 99},
                    {"label": "Review the ECG again", "nextStep": 1},
                ],
            },
        ],
    },
]


class CaseLibrary:
    """Saved encounter cases stored as JSON files, plus the built-in samples"""

    def __init__(self, storage_dir: str = "cases"):
        self.storage_dir = storage_dir
        self._ensure_storage_dir()

    def _ensure_storage_dir(self):
        """Ensure the storage directory exists"""
        if not os.path.exists(self.storage_dir):
            os.makedirs(self.storage_dir)

    def save_case(self, case: EncounterCase) -> str:
        """Save a case and return its ID"""
        slug = case.title.lower().replace(' ', '_')[:60] or 'case'
        case_id = f"{slug}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
        file_path = os.path.join(self.storage_dir, f"{case_id}.json")
        try:
            with open(file_path, 'w', encoding='utf-8') as f:
                json.dump(case.dict(), f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.error(f"Error saving case: {str(e)}")
            raise PersistenceFailure(str(e)) from e

        logger.info(f"Case saved successfully: {case_id}")
        return case_id

    def fetch_saved_cases(self) -> List[EncounterCase]:
        """Built-in samples followed by every readable case on disk"""
        cases = [normalize_case(sample) for sample in SAMPLE_CASES]
        for file_name in sorted(os.listdir(self.storage_dir)):
            if not file_name.endswith('.json'):
                continue
            try:
                with open(os.path.join(self.storage_dir, file_name), 'r', encoding='utf-8') as f:
                    cases.append(normalize_case(json.load(f)))
            except (OSError, ValueError, InvalidCaseData) as e:
                logger.error(f"Error loading case {file_name}: {str(e)}")
        return cases
