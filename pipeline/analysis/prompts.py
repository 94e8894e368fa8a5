"""
Prompts for medical document analysis, translation, chat and pharmacy lookup.

Patient context only adjusts the tone of explanations. It must never change
what is extracted.
"""

import json
from typing import Any, Dict, Optional

from pipeline.analysis.schema import DOSAGE_UNCLEAR, PatientProfile, Tone

SUGGESTION_MARKER = "[SUGGESTION]"

_TONE_GUIDANCE = {
    Tone.SIMPLE: "Use plain, everyday words a non-medical reader understands.",
    Tone.PROFESSIONAL: "Use precise clinical terminology suitable for a caregiver or clinician.",
    Tone.REASSURING: "Be calm and supportive, without downplaying any warning.",
}


def _patient_context(profile: Optional[PatientProfile]) -> str:
    profile = profile or PatientProfile()
    age = profile.age or "unknown age"
    gender = profile.gender or ""
    return f"Patient is {age} {gender}".strip() + f". Tone: {profile.tone.value}."


def get_analysis_prompt(language: str, profile: Optional[PatientProfile] = None) -> str:
    """Instruction sent alongside the document image."""
    profile = profile or PatientProfile()
    return f"""Act as an expert clinical pharmacist and lab technician.
Analyze the provided document for HEALTH AWARENESS and EDUCATION ONLY.

CONTEXT: {_patient_context(profile)}
{_TONE_GUIDANCE[profile.tone]}
The patient context only changes how things are explained. Never let it change what you read from the document.

TASKS:
1. OCR the document and decipher handwriting, including prescription shorthand
   (e.g. OD, BD, TDS, HS, SOS, AC, PC). List each decoded abbreviation in "shorthandDecoded".
2. For every medicine: name, purpose, usage instructions, common side effects, warnings,
   and the dosage exactly as written.
3. If a dosage is illegible or missing, strictly return "{DOSAGE_UNCLEAR}" as dosageStatus.
   Never guess a dosage.
4. For lab reports: every parameter with value, unit, reference range, a status of exactly
   one of Normal, Borderline, High, Low, and a short explanation.
5. Check whether the detected medicines interact with each other and describe any conflict.
6. Give key recommendations and clear warnings about medical context.
7. Rate your confidence in the reading as an integer from 0 to 100.

Write every explanation, summary and recommendation in {language}.
Keep medicine names and numeric values exactly as written in the document."""


def get_translation_prompt(payload: Dict[str, Any], language: str) -> str:
    """Instruction to re-express an existing analysis in another language."""
    return f"""Translate this medical analysis to {language}. Keep clinical terms accurate.

RULES:
- Translate every textual field (summary, purpose, usage, side effects, warnings,
  explanations, recommendations, shorthand meanings).
- Keep medicine names, numeric values, units and reference ranges unchanged.
- Keep the same number and order of medicines and lab results.
- Keep each lab status and the confidenceScore exactly as given.
- Keep dosageStatus unchanged when it is "{DOSAGE_UNCLEAR}".

Data: {json.dumps(payload, ensure_ascii=False)}"""


def get_chat_system_instruction(context: Optional[Dict[str, Any]], language: str) -> str:
    report = json.dumps(context, ensure_ascii=False) if context else "None uploaded."
    return f"""You are "MediDecode Concierge", a clinical education assistant.
PURPOSE: Explain the current decoded medical report and answer health awareness questions.
STRICT RULE: You are NOT a doctor. Always include a disclaimer.

REPORT CONTEXT: {report}

RESPONSE RULES:
1. Language: {language}.
2. Be helpful but cautious.
3. Format suggestions as {SUGGESTION_MARKER} Question? at the end."""


def get_pharmacy_prompt(latitude: float, longitude: float) -> str:
    return (
        "Find 3 highly-rated pharmacies near my current location "
        f"(latitude {latitude:.6f}, longitude {longitude:.6f}). "
        "Return a list of places. Only include places that actually exist near this location."
    )
