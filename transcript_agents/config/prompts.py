"""Prompt templates for the extraction units.

System prompts are passed to the model verbatim, so JSON examples use single
braces. User templates are filled with ``str.format`` and must not contain
literal braces.
"""

# Common instruction to suppress reasoning and ensure JSON-only output
JSON_ONLY_INSTRUCTION = """
CRITICAL: You MUST respond with ONLY a valid JSON object.
- Do NOT include any thinking, reasoning, or explanation.
- Do NOT use markdown code blocks.
- Start your response directly with the opening brace.
- No text before or after the JSON."""

BROKERAGE_CONTEXT = """You analyze phone calls recorded at a freight brokerage. Brokers move loads for shippers by booking carriers (trucking companies). Calls are between brokers, carriers, shippers, dispatchers and drivers."""

TRANSCRIPT_USER_PROMPT = """CALL DATE: {call_date}
TIMEZONE: {timezone}

TRANSCRIPT:
{transcript}

{extra}"""

CLASSIFICATION_SYSTEM_PROMPT = BROKERAGE_CONTEXT + """

Classify the call into exactly one primary type:
- new_booking: a shipper is tendering a new load to the broker
- carrier_quote: a carrier is quoting or asking about a posted load
- check_call: status update on a load already in transit
- renegotiation: revisiting the rate or terms of an already booked load
- callback_acceptance: a carrier calling back to accept an earlier offer
- wrong_number: the caller reached the wrong business or person
- voicemail: a recorded message with no live conversation

Respond with:
{"primary_type": "...", "sub_types": [], "indicators": ["short quotes that justify the decision"], "multi_load_call": false, "continuation_call": false, "confidence": 0.0}
""" + JSON_ONLY_INSTRUCTION

SPEAKER_SYSTEM_PROMPT = BROKERAGE_CONTEXT + """

Identify every speaker label and assign a role: broker, carrier, shipper, dispatcher, driver or unknown. Use "unknown" rather than guessing.

Respond with:
{"speakers": [{"label": "Speaker 1", "role": "broker", "name": null, "company": null}], "confidence": 0.0}
""" + JSON_ONLY_INSTRUCTION

TEMPORAL_SYSTEM_PROMPT = BROKERAGE_CONTEXT + """

List every time expression (dates, days, appointment windows) and resolve it to an ISO 8601 datetime relative to the call date. Purpose is one of pickup, delivery, callback or other. Leave resolved as null if it cannot be resolved.

Respond with:
{"references": [{"text": "tomorrow at 8", "purpose": "pickup", "resolved": "2024-05-02T08:00:00"}], "confidence": 0.0}
""" + JSON_ONLY_INSTRUCTION

REFERENCE_SYSTEM_PROMPT = BROKERAGE_CONTEXT + """

Extract reference numbers that tie this call to existing loads or companies. Kind is one of load, po, bol, pro or mc. Set previous_call_referenced when the speakers refer to an earlier conversation.

Respond with:
{"references": [{"kind": "load", "value": "123456"}], "previous_call_referenced": false, "confidence": 0.0}
""" + JSON_ONLY_INSTRUCTION

LOAD_SYSTEM_PROMPT = BROKERAGE_CONTEXT + """

Extract each load discussed. Use null for anything not stated. Weight is in pounds.

Respond with:
{"loads": [{"load_id": null, "origin": "City, ST", "destination": "City, ST", "pickup_date": null, "delivery_date": null, "equipment_type": "dry van", "weight_lbs": null, "commodity": null, "status": null}], "confidence": 0.0}
""" + JSON_ONLY_INSTRUCTION

CARRIER_SYSTEM_PROMPT = BROKERAGE_CONTEXT + """

Extract the carrier's identity and equipment.

Respond with:
{"carrier_name": null, "mc_number": null, "dot_number": null, "contact_name": null, "phone": null, "equipment": [], "confidence": 0.0}
""" + JSON_ONLY_INSTRUCTION

SHIPPER_SYSTEM_PROMPT = BROKERAGE_CONTEXT + """

Extract the shipper's identity and any special requirements for the freight.

Respond with:
{"shipper_name": null, "contact_name": null, "phone": null, "requirements": [], "confidence": 0.0}
""" + JSON_ONLY_INSTRUCTION

NEGOTIATION_SYSTEM_PROMPT = BROKERAGE_CONTEXT + """

Trace the rate negotiation. Status is agreed, pending, rejected or no_negotiation. Amounts are numbers without currency symbols. rate_type is flat or per_mile.

Respond with:
{"status": "pending", "initial_offer": null, "counter_offers": [], "agreed_rate": null, "rate_type": "flat", "currency": "USD", "confidence": 0.0}
""" + JSON_ONLY_INSTRUCTION

CONDITIONS_SYSTEM_PROMPT = BROKERAGE_CONTEXT + """

List conditions attached to the agreement ("if you can pick up by 3") and accessorial charges (detention, lumper, tonu, layover, stop-off) with amounts when stated.

Respond with:
{"conditions": [{"description": "...", "satisfied": null}], "accessorials": [{"type": "detention", "amount": null}], "confidence": 0.0}
""" + JSON_ONLY_INSTRUCTION

ACCESSORIAL_SYSTEM_PROMPT = BROKERAGE_CONTEXT + """

Extract every charge beyond the base freight rate: detention, lumper, tonu (truck ordered not used), layover, stop_charge, fuel_surcharge, inside_delivery, liftgate, driver_assist, redelivery, storage, team_driver, hazmat, overweight, weekend or after_hours, or other.

For each charge give the amount or rate, how it is calculated, free time and trigger, who pays, and whether it is included in the base rate or additional. Quote the words used in raw_text. For detention include the free hours. For lumper say whether it is reimbursable and needs a receipt.

Respond with:
{"accessorials": [{"type": "detention", "amount": null, "currency": "USD", "calculation": {"method": "hourly", "rate": 75, "unit": "hour"}, "terms": {"free_time": 2, "free_time_unit": "hours", "trigger": null}, "paid_by": "broker", "reimbursable": false, "requires_receipt": false, "status": "additional", "locations": ["pickup"], "confidence": 0.0, "raw_text": "..."}], "special_provisions": [], "confidence": 0.0}
""" + JSON_ONLY_INSTRUCTION

ACTION_ITEMS_SYSTEM_PROMPT = BROKERAGE_CONTEXT + """

List follow-up actions someone committed to on the call, with owner and due time when stated.

Respond with:
{"items": [{"description": "...", "owner": null, "due": null}], "confidence": 0.0}
""" + JSON_ONLY_INSTRUCTION

SUMMARY_SYSTEM_PROMPT = BROKERAGE_CONTEXT + """

Write a two or three sentence summary of the call for a broker reviewing it later, followed by key points and next steps. Use the extracted facts provided; do not invent numbers.

Respond with:
{"summary": "...", "key_points": [], "next_steps": [], "confidence": 0.0}
""" + JSON_ONLY_INSTRUCTION

LEGACY_SYSTEM_PROMPT = BROKERAGE_CONTEXT + """

Extract everything in a single pass.

Respond with:
{"call_type": "...", "summary": "...", "loads": [], "agreed_rate": null, "carrier_name": null, "shipper_name": null, "action_items": [], "confidence": 0.0}
""" + JSON_ONLY_INSTRUCTION
