import json
import logging
import re
from typing import Dict, Optional, TypedDict, Any

from langchain_community.chat_models import ChatOllama
from langchain_core.messages import HumanMessage, SystemMessage
from langgraph.graph import StateGraph, END

import config as settings
from encounter_engine import normalize_case
from errors import InvalidCaseData
from models import EncounterCase

logger = logging.getLogger(__name__)


class GenerationState(TypedDict):
    """State carried through the case generation workflow"""
    topic: str
    raw: Optional[str]
    case: Optional[Dict[str, Any]]
    error: Optional[str]
    retries: int
    completed: bool


def build_llm():
    try:
        llm = ChatOllama(
            model=settings.LLM_MODEL,
            temperature=settings.LLM_TEMPERATURE,
            format="json",
        )
        logger.info(f"Initialized LLM {settings.LLM_MODEL}")
        return llm
    except Exception as e:
        logger.error(f"Error initializing LLM: {str(e)}", exc_info=True)
        raise


def case_prompt(topic: str) -> str:
    return f"""You are a medical educator. Create a clinical case on "{topic}".
    Output VALID JSON. Structure:
    {{
      "title": "Case Title",
      "source": "AI Simulation",
      "subject": "{topic}",
      "description": "Brief summary",
      "steps": [
        {{
          "title": "Step Title (e.g. Initial Presentation)",
          "prompt": "HTML formatted scenario text. Describe patient vitals, symptoms, etc.",
          "action": "Short label for decision button (e.g. Choose Diagnosis)",
          "options": [ {{ "label": "Option A", "nextStep": 1 }} ]
        }}
      ]
    }}

    CRITICAL RULES:
    1. Every step MUST have a "prompt" field. Do NOT use "description" or "text".
    2. The correct path MUST be sequential indices: Index 0 -> Index 1 -> Index 2 -> 100.
    3. Use "nextStep": 99 for failure, 100 for success."""


def parse_case_json(content: str) -> Dict[str, Any]:
    """Pull the JSON object out of an LLM reply, tolerating code fences"""
    text = content.strip()
    fenced = re.search(r'```(?:json)?\s*(.*?)```', text, re.DOTALL)
    if fenced:
        text = fenced.group(1).strip()
    if not text.startswith('{'):
        start, end = text.find('{'), text.rfind('}')
        if start == -1 or end <= start:
            raise ValueError("No JSON object in response")
        text = text[start:end + 1]

    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data


class CaseGenerator:
    """Generates encounter cases with an LLM, retrying until one normalises"""

    def __init__(self, llm=None, max_retries: int = settings.CASE_GENERATION_RETRIES):
        self.llm = llm if llm is not None else build_llm()
        self.max_retries = max_retries
        self.workflow = self._build_workflow()

    def _build_workflow(self):
        workflow = StateGraph(GenerationState)
        workflow.add_node("request", self._request_case)
        workflow.add_node("validate", self._validate_case)
        workflow.set_entry_point("request")
        workflow.add_conditional_edges(
            "request",
            self._after_request,
            {
                "validate": "validate",
                "request": "request",
                "end": END
            }
        )
        workflow.add_conditional_edges(
            "validate",
            self._should_continue,
            {
                "request": "request",
                "end": END
            }
        )
        return workflow.compile()

    async def _request_case(self, state: GenerationState) -> GenerationState:
        messages = [
            SystemMessage(content=case_prompt(state["topic"])),
            HumanMessage(content=f"Generate a high-yield case on {state['topic']}")
        ]
        try:
            response = await self.llm.ainvoke(messages)
            logger.debug(f"LLM response for case: {response.content}")
            state["raw"] = response.content
            state["error"] = None
        except Exception as e:
            logger.error(f"Error requesting case: {str(e)}", exc_info=True)
            state["raw"] = None
            state["error"] = str(e)
            state["retries"] += 1
        return state

    async def _validate_case(self, state: GenerationState) -> GenerationState:
        try:
            case = normalize_case(parse_case_json(state["raw"] or ""))
            state["case"] = case.dict()
            state["completed"] = True
            state["error"] = None
        except (ValueError, InvalidCaseData) as e:
            logger.warning(f"Generated case rejected (attempt {state['retries'] + 1}): {str(e)}")
            state["error"] = str(e)
            state["retries"] += 1
        return state

    def _after_request(self, state: GenerationState) -> str:
        if state.get("raw") is not None:
            return "validate"
        return self._should_continue(state)

    def _should_continue(self, state: GenerationState) -> str:
        """Retry until a case validates or the retry budget is spent"""
        if state.get("completed"):
            return "end"
        if state.get("retries", 0) >= self.max_retries:
            logger.warning("Max retries reached, giving up on case generation")
            return "end"
        return "request"

    async def generate_case(self, topic: str) -> Optional[EncounterCase]:
        """Generate a case on ``topic``; None when every attempt failed"""
        initial: GenerationState = {
            "topic": topic,
            "raw": None,
            "case": None,
            "error": None,
            "retries": 0,
            "completed": False,
        }
        try:
            final = await self.workflow.ainvoke(initial)
        except Exception as e:
            logger.error(f"Error generating case: {str(e)}", exc_info=True)
            return None

        if not final.get("case"):
            logger.error(f"Could not generate a case on '{topic}': {final.get('error')}")
            return None
        return EncounterCase(**final["case"])
