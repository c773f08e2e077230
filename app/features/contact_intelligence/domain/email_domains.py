"""
Public email providers and the heuristics used to tell a company domain
from a personal mailbox when grouping contacts by email.
"""

import re
from typing import NamedTuple

PUBLIC_EMAIL_DOMAINS: frozenset[str] = frozenset(
    {
        # Global providers
        "gmail.com",
        "googlemail.com",
        "hotmail.com",
        "live.com",
        "msn.com",
        "outlook.com",
        "windowslive.com",
        "yahoo.ca",
        "yahoo.co.in",
        "yahoo.co.jp",
        "yahoo.co.uk",
        "yahoo.com",
        "yahoo.com.au",
        "yahoo.de",
        "yahoo.es",
        "yahoo.fr",
        "yahoo.in",
        "yahoo.it",
        "ymail.com",
        "icloud.com",
        "mac.com",
        "me.com",
        "aol.com",
        "mail.com",
        "zoho.com",
        # ISPs
        "verizon.net",
        "att.net",
        "comcast.net",
        "sbcglobal.net",
        "earthlink.net",
        "cox.net",
        "btinternet.com",
        "sky.com",
        "talktalk.net",
        "virginmedia.com",
        # Privacy-focused
        "fastmail.com",
        "hey.com",
        "hushmail.com",
        "mailbox.org",
        "pm.me",
        "proton.me",
        "protonmail.com",
        "tutanota.com",
        # Regional
        "bk.ru",
        "inbox.ru",
        "list.ru",
        "mail.ru",
        "rambler.ru",
        "yandex.com",
        "yandex.ru",
        "126.com",
        "163.com",
        "qq.com",
        "sina.com",
        "sohu.com",
        "yeah.net",
        "gmx.de",
        "gmx.net",
        "t-online.de",
        "web.de",
        "free.fr",
        "laposte.net",
        "orange.fr",
        "sfr.fr",
        "wanadoo.fr",
        "libero.it",
        "virgilio.it",
        "seznam.cz",
        "wp.pl",
        "daum.net",
        "hanmail.net",
        "naver.com",
        "rediffmail.com",
        # Disposable
        "10minutemail.com",
        "getnada.com",
        "guerrillamail.com",
        "mail.tm",
        "mailinator.com",
        "temp-mail.org",
        "tempail.com",
        "throwawaymail.com",
    }
)

MAIL_HOST_PREFIXES = ("mail.", "email.", "smtp.", "webmail.", "mx.")
COMPANY_WORDS = ("corp", "inc", "ltd", "llc", "tech", "group", "systems", "solutions", "labs")
_BUSINESS_TLD = re.compile(r"\.(com|org|net|io|ai|tech|app|co\.[a-z]{2})$")


class DomainAnalysis(NamedTuple):
    is_company_domain: bool
    confidence: float
    reason: str


def is_public_email_domain(domain: str | None) -> bool:
    if not domain:
        return True
    domain = domain.lower().strip()
    if domain in PUBLIC_EMAIL_DOMAINS:
        return True
    # Schools and governments are shared, not one company
    if domain.endswith(".edu") or ".ac." in domain:
        return True
    return domain.endswith(".gov") or ".gov." in domain or ".gouv." in domain


def extract_email_domain(email: str | None) -> str | None:
    if not email or not isinstance(email, str):
        return None
    local, sep, domain = email.strip().rpartition("@")
    if not sep or not local or not domain:
        return None
    return domain.lower()


def company_identifier(domain: str) -> str:
    domain = domain.lower().strip()
    for prefix in MAIL_HOST_PREFIXES:
        if domain.startswith(prefix):
            return domain[len(prefix):]
    return domain


def analyze_email_domain(domain: str | None) -> DomainAnalysis:
    if not domain:
        return DomainAnalysis(False, 0.0, "No domain")

    domain = domain.lower().strip()
    if is_public_email_domain(domain):
        return DomainAnalysis(False, 0.95, "Known public email provider")

    score = 0.0
    reasons = []
    if _BUSINESS_TLD.search(domain):
        score += 0.3
        reasons.append("Business TLD")
    if not any(ch.isdigit() for ch in domain):
        score += 0.2
        reasons.append("No numbers in domain")
    if len(domain.split(".")[0]) <= 10:
        score += 0.2
        reasons.append("Short domain name")
    if any(word in domain for word in COMPANY_WORDS):
        score += 0.3
        reasons.append("Contains business keywords")

    return DomainAnalysis(
        is_company_domain=score > 0.5,
        confidence=round(min(score, 0.95), 2),
        reason=", ".join(reasons) or "General pattern match",
    )
