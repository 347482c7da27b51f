from __future__ import annotations

import json
from typing import Any, Mapping, Sequence

SYSTEM_PROMPT = "You are a specialized data analysis assistant. Output strict JSON."

_USER_PROMPT_HEADER = """
You are an assistant responsible for analyzing post-shift care reports written by staff.
Your task is to read structured shift data along with free-text shift notes and produce a clear, factual exception analysis.

Input:
You will receive a JSON list of shifts. Each shift contains relevant fields like Date, Client, Staff, Scheduled/Actual times, and Notes.

For EACH shift, perform the following verification and extraction:

1. **Shift Summary**: Produce a concise, professional 2-3 line summary of what occurred during the shift. Use only information explicitly present. Do not infer or assume.

2. **Exception Detection**:
   - **Early Leave**: Check if Actual End Time is earlier than Scheduled End Time. Extract the reason exactly as written in the notes, if mentioned.
   - **Overtime**: Check if Actual End Time is later than Scheduled End Time. Capture duration if possible.
   - **Staff Change**: Any indication of staff replacement, handover, or client-requested change. Capture the stated reason, if available.

3. **Night Stay / Sleepover Detection**:
   - Detect if this is a night shift, sleepover, or overnight shift.
   - Look for patterns like: "10pm-6am", "sleepover", "overnight", "night shift", "10:00 pm - 06:00 am", "22:00-06:00".
   - Set "occurred": true if night stay pattern is detected, false otherwise.
   - Extract shift duration if mentioned.

4. **Special Requests Detection**:
   - Identify any special requests from clients, families, or care plans.
   - Look for: dietary preferences, activity requests, family requests, appointment scheduling, shopping requests, preferences.
   - Extract the exact text of the request.
   - Set "occurred": true if any special request is mentioned, false otherwise.

5. **Incident Detection**:
   - Identify incidents reported in the notes (Category field may say "Incident").
   - Categorize severity: "low" (minor issues), "medium" (requires attention), "high" (serious concerns, injuries, medical emergencies).
   - Extract incident description exactly as written.
   - Set "occurred": true if incident is present, false otherwise.

6. **Behaviour Alerts**:
   - Detect behavioural concerns: aggression, self-harm, restraints used, challenging behaviour, heightened behaviour.
   - Look for keywords: "aggressive", "self-harm", "restraint", "RP", "behaviour", "incident", "challenging", "heightened".
   - Extract the exact description of the behaviour.
   - Set "occurred": true if behaviour alert is present, false otherwise.

7. **Medication Concerns**:
   - Detect medication-related issues: refused medication, missed doses, medication reactions, administration errors.
   - Look for: "refused", "missed", "not administered", "medication", "reaction", "error".
   - Extract the exact description of the concern.
   - Set "occurred": true if medication concern is present, false otherwise.

8. **Expense Extraction**:
   - Extract Expense type (e.g., taxi, meal, parking, shopping, groceries), Amount, Currency (assume AUD if not stated).
   - Indicate if the note implies a reimbursement claim.
   - Only include expenses explicitly mentioned.

9. **Reimbursement Claims**:
   - Flag reimbursement if the notes include terms such as: "reimburse", "claim", "refund", "to be paid back".
   - Do not assume reimbursement unless clearly stated.

10. **Reason Capture**:
   - For every exception, capture the exact wording of the reason from the shift notes. Do not paraphrase reasons.
   - If no reason is mentioned, return null.

11. **Lazy Note**:
   - Flag if the staff member hasn't put effort into note making (e.g. extremely short, generic, or empty).
"""

_USER_PROMPT_FOOTER = """
Output Rules:
- Be factual and conservative.
- Never guess intent.
- Never invent values.
- Prefer false negatives over false positives.
- Accuracy is more important than completeness.

Output Requirements:
Return a JSON Object where keys are the shift IDs (from input 'id' field) and values adhere to this schema:
{
  "staff_name": "string",
  "shift_summary": "string",
  "exceptions": {
    "early_leave": { "occurred": boolean, "reason": "string (exact text) or null", "duration": "string or null" },
    "overtime": { "occurred": boolean, "duration": "string or null" },
    "staff_change": { "occurred": boolean, "reason": "string or null" },
    "night_stay": { "occurred": boolean, "duration": "string or null" },
    "special_request": { "occurred": boolean, "description": "string or null" },
    "incident": { "occurred": boolean, "severity": "low|medium|high|null", "description": "string or null" },
    "behaviour_alert": { "occurred": boolean, "description": "string or null" },
    "medication_concern": { "occurred": boolean, "description": "string or null" }
  },
  "expenses": [
    { "type": "string", "amount": number, "currency": "string", "is_reimbursement": boolean }
  ],
  "reimbursement_claim_explicit": boolean,
  "lazy_note": boolean
}
IMPORTANT: Return STRICT JSON only.
"""


def build_user_prompt(batch_payload: Sequence[Mapping[str, Any]]) -> str:
    return (
        _USER_PROMPT_HEADER
        + "\nInput JSON:\n"
        + json.dumps(list(batch_payload), ensure_ascii=False)
        + "\n"
        + _USER_PROMPT_FOOTER
    )
