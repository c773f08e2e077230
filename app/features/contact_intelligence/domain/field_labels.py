"""Declarative table mapping free-form contact field labels onto canonical names."""

NAME = "Name"
EMAIL = "Email"
PHONE = "Phone"
COMPANY = "Company"
JOB_TITLE = "Job Title"
WEBSITE = "Website"
ADDRESS = "Address"
NOTES = "Notes"

FIELD_LABELS: dict[str, str] = {
    "name": NAME,
    "full name": NAME,
    "fullname": NAME,
    "nom": NAME,
    "email": EMAIL,
    "email address": EMAIL,
    "e-mail": EMAIL,
    "courriel": EMAIL,
    "phone": PHONE,
    "phone number": PHONE,
    "tel": PHONE,
    "telephone": PHONE,
    "téléphone": PHONE,
    "mobile": PHONE,
    "company": COMPANY,
    "company name": COMPANY,
    "organization": COMPANY,
    "organisation": COMPANY,
    "org": COMPANY,
    "entreprise": COMPANY,
    "société": COMPANY,
    "job title": JOB_TITLE,
    "title": JOB_TITLE,
    "position": JOB_TITLE,
    "jobtitle": JOB_TITLE,
    "role": JOB_TITLE,
    "poste": JOB_TITLE,
    "fonction": JOB_TITLE,
    "website": WEBSITE,
    "web": WEBSITE,
    "url": WEBSITE,
    "site": WEBSITE,
    "address": ADDRESS,
    "location": ADDRESS,
    "adresse": ADDRESS,
    "notes": NOTES,
    "note": NOTES,
    "linkedin": "LinkedIn",
    "twitter": "Twitter",
    "facebook": "Facebook",
}


def normalize_label(label: str) -> str:
    """Return the canonical label; unknown labels come back capitalized."""
    key = " ".join((label or "").split()).casefold()
    if key in FIELD_LABELS:
        return FIELD_LABELS[key]
    return key.capitalize()
