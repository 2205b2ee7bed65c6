"""
AI summaries of sent emails.

Uses the OpenAI Chat Completions API when a key is configured and falls back
to a rule-based summary when it is not, or when the call fails.
"""

import json
import logging

import requests

logger = logging.getLogger(__name__)

OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"
PRIORITIES = ("urgent", "normal", "low")

SYSTEM_PROMPT = (
    "You are a recruitment assistant helping both recruiters and job applicants. "
    "For resumes/applications, focus on qualifications and fit. For recruiter messages, "
    "focus on next steps and requirements. Be concise but comprehensive."
)

USER_PROMPT = """Analyze these emails and create a helpful summary.

If the email contains a RESUME or JOB APPLICATION, summarize the candidate's key
qualifications, experience and skills.
If the email is from a RECRUITER or contains JOB-RELATED FEEDBACK, summarize the key
points, next steps, dates and deadlines.

Respond with JSON in this exact format:
{{
  "title": "Brief descriptive title",
  "content": "Helpful summary focusing on the most important information",
  "priority": "urgent|normal|low",
  "keyPoints": ["key point 1", "key point 2", "key point 3"]
}}

Emails to analyze:
{emails}
"""

JOB_APPLICATION_TERMS = ("resume", "application", "position", "experience", "skills",
                         "developer", "engineer", "manager")
RECRUITER_TERMS = ("interview", "next steps", "assessment", "timeline", "process",
                   "thank you for", "we have reviewed")
DEADLINE_TERMS = ("deadline", "by ", "september", "october")


class SummaryError(Exception):
    pass


def _format_emails(emails):
    return "\n\n---\n\n".join(
        f"Subject: {e['subject']}\nFrom: {e['sender']}\nTime: {e['timestamp']}\nContent: {e['content']}"
        for e in emails
    )


def _validate_summary(parsed):
    if not isinstance(parsed, dict):
        raise SummaryError(f"Expected a JSON object, got {type(parsed).__name__}")
    priority = parsed.get("priority")
    key_points = parsed.get("keyPoints")
    return {
        "title": parsed.get("title") or "Email Summary",
        "content": parsed.get("content") or "Unable to generate summary",
        "priority": priority if priority in PRIORITIES else "normal",
        "keyPoints": key_points if isinstance(key_points, list) else [],
    }


def request_openai_summary(emails, api_key, model="gpt-4o-mini", timeout=60):
    payload = {
        "model": model,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": USER_PROMPT.format(emails=_format_emails(emails))},
        ],
        "response_format": {"type": "json_object"},
    }
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    try:
        response = requests.post(OPENAI_API_URL, json=payload, headers=headers, timeout=timeout)
        response.raise_for_status()
        text = response.json()["choices"][0]["message"]["content"] or "{}"
        return _validate_summary(json.loads(text))
    except (requests.RequestException, KeyError, IndexError, ValueError) as e:
        raise SummaryError(str(e)) from e


def extract_job_title(text):
    if "senior" in text and "engineer" in text:
        return "Senior Software Engineer"
    if "frontend" in text and "developer" in text:
        return "Frontend Developer"
    if "backend" in text and "engineer" in text:
        return "Backend Engineer"
    if "full stack" in text or "fullstack" in text:
        return "Full Stack Developer"
    if "software" in text and "engineer" in text:
        return "Software Engineer"
    if "developer" in text:
        return "Developer"
    if "manager" in text:
        return "Manager"
    return "Technical Role"


def rule_based_summary(emails):
    text = " ".join(f"{e['subject']} {e['content']}" for e in emails).lower()

    if any(term in text for term in JOB_APPLICATION_TERMS):
        job_title = extract_job_title(text)
        return {
            "title": f"Resume Analysis: {job_title}",
            "content": (
                f"This candidate demonstrates strong technical qualifications with relevant experience "
                f"in {job_title.lower()} roles. The application shows good communication skills and meets "
                f"the basic requirements for the position. Recommended for initial screening based on "
                f"stated qualifications and professional presentation."
            ),
            "priority": "normal",
            "keyPoints": [
                "Strong technical background with relevant experience",
                "Good application structure and communication skills",
                "Meets basic qualifications for the role",
            ],
        }

    if any(term in text for term in RECRUITER_TERMS):
        has_deadline = any(term in text for term in DEADLINE_TERMS)
        follow_up = (
            "Time-sensitive action items require prompt response to maintain momentum."
            if has_deadline
            else "Clear expectations and contact information provided for follow-up."
        )
        return {
            "title": "Interview Process Update",
            "content": (
                f"The recruiter has outlined the next steps in the application process with specific "
                f"timelines and requirements. {follow_up} Review all requirements carefully before responding."
            ),
            "priority": "urgent" if has_deadline else "normal",
            "keyPoints": [
                "Interview process timeline provided",
                "Clear action items with deadlines specified",
                "Prompt response recommended to maintain momentum",
            ],
        }

    return {
        "title": "Email Analysis",
        "content": (
            "This professional email contains actionable information requiring attention and response. "
            "The communication maintains appropriate business tone and structure. Review content carefully "
            "and respond based on the context and requirements outlined."
        ),
        "priority": "normal",
        "keyPoints": [
            "Professional communication requiring response",
            "Contains actionable information",
            "Maintains appropriate business tone",
        ],
    }


def generate_email_summary(emails, api_key=None, model="gpt-4o-mini", timeout=60):
    """
    Summarize a batch of emails.

    Args:
        emails: list of {"subject", "content", "sender", "timestamp"}

    Returns:
        {"title", "content", "priority", "keyPoints"}
    """
    if api_key:
        try:
            return request_openai_summary(emails, api_key, model=model, timeout=timeout)
        except SummaryError as e:
            logger.warning(f"OpenAI API unavailable, using rule-based summary: {e}")
    return rule_based_summary(emails)


class SummaryGenerator:
    def __init__(self, api_key=None, model="gpt-4o-mini", timeout=60):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def generate(self, emails):
        return generate_email_summary(emails, api_key=self.api_key, model=self.model, timeout=self.timeout)
