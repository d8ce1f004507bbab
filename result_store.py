import os
import json
import logging
from typing import Dict, Any, List
from datetime import datetime

from errors import PersistenceFailure
from models import ResultRecord

logger = logging.getLogger(__name__)


class ResultStore:
    def __init__(self, storage_dir: str = "results"):
        self.storage_dir = storage_dir
        self._ensure_storage_dir()

    def _ensure_storage_dir(self):
        """Ensure the storage directory exists"""
        if not os.path.exists(self.storage_dir):
            os.makedirs(self.storage_dir)

    def save_result(self, record: ResultRecord) -> str:
        """Save a test result and return its ID"""
        try:
            stamp = datetime.now()
            data = record.dict()
            data['timestamp'] = data.get('timestamp') or stamp.isoformat()

            slug = record.test_title.lower().replace(' ', '_') or 'quiz'
            result_id = f"{slug}_{stamp.strftime('%Y%m%d_%H%M%S_%f')}"
            file_path = os.path.join(self.storage_dir, f"{result_id}.json")

            with open(file_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)

            logger.info(f"Result saved successfully: {result_id}")
            return result_id

        except OSError as e:
            logger.error(f"Error saving result: {str(e)}")
            raise PersistenceFailure(str(e)) from e

    def list_results(self) -> List[Dict[str, Any]]:
        """All saved results, oldest first"""
        results = []
        for file_name in sorted(os.listdir(self.storage_dir)):
            if not file_name.endswith('.json'):
                continue
            try:
                with open(os.path.join(self.storage_dir, file_name), 'r', encoding='utf-8') as f:
                    results.append(json.load(f))
            except (OSError, ValueError) as e:
                logger.error(f"Error loading result {file_name}: {str(e)}")
        return sorted(results, key=lambda r: r.get('timestamp', ''))
