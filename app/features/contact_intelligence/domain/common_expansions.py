"""
Static query expansions for frequent search terms.

A hit here is free: no cache read, no LLM call. Keys are matched
case-insensitively (see `lookup`). Language codes are ISO 639-3.
"""

from typing import NamedTuple


class StaticExpansion(NamedTuple):
    enhanced_query: str
    language: str


COMMON_EXPANSIONS: dict[str, StaticExpansion] = {
    # Executive roles (English)
    "CEO": StaticExpansion(
        "CEO, Chief Executive Officer, President, Managing Director, Executive Director, Company Leader",
        "eng",
    ),
    "CTO": StaticExpansion(
        "CTO, Chief Technology Officer, VP Engineering, Head of Technology, Tech Lead, Technology Director",
        "eng",
    ),
    "CFO": StaticExpansion(
        "CFO, Chief Financial Officer, Finance Director, VP Finance, Financial Controller", "eng"
    ),
    "COO": StaticExpansion("COO, Chief Operating Officer, VP Operations, Operations Director", "eng"),
    "CMO": StaticExpansion(
        "CMO, Chief Marketing Officer, VP Marketing, Marketing Director, Head of Marketing", "eng"
    ),
    "CISO": StaticExpansion(
        "CISO, Chief Information Security Officer, Security Director, Head of Security, VP Security",
        "eng",
    ),
    "CIO": StaticExpansion(
        "CIO, Chief Information Officer, IT Director, Head of IT, VP Information Technology", "eng"
    ),
    "CPO": StaticExpansion(
        "CPO, Chief Product Officer, VP Product, Product Director, Head of Product", "eng"
    ),
    "CHRO": StaticExpansion(
        "CHRO, Chief Human Resources Officer, HR Director, VP Human Resources, People Director",
        "eng",
    ),
    "CDO": StaticExpansion("CDO, Chief Data Officer, Data Director, Head of Data, VP Data", "eng"),
    # Executive roles (French)
    "PDG": StaticExpansion(
        "PDG, Président Directeur Général, CEO, Directeur Général, Dirigeant, Chef d'entreprise",
        "fra",
    ),
    "DG": StaticExpansion(
        "DG, Directeur Général, General Manager, Managing Director, Directeur", "fra"
    ),
    "DAF": StaticExpansion(
        "DAF, Directeur Administratif et Financier, CFO, Directeur Financier", "fra"
    ),
    "DRH": StaticExpansion(
        "DRH, Directeur des Ressources Humaines, CHRO, Responsable RH, HR Director", "fra"
    ),
    "DSI": StaticExpansion(
        "DSI, Directeur des Systèmes d'Information, CIO, IT Director, Responsable Informatique",
        "fra",
    ),
    # Common roles (English)
    "founder": StaticExpansion(
        "Founder, Co-Founder, Startup Founder, Entrepreneur, Business Owner, Company Founder", "eng"
    ),
    "engineer": StaticExpansion(
        "Engineer, Software Engineer, Developer, Programmer, Software Developer, Tech Engineer",
        "eng",
    ),
    "manager": StaticExpansion(
        "Manager, Project Manager, Team Lead, Department Manager, Program Manager", "eng"
    ),
    "developer": StaticExpansion(
        "Developer, Software Developer, Engineer, Programmer, Coder, Software Engineer", "eng"
    ),
    "designer": StaticExpansion(
        "Designer, UX Designer, UI Designer, Product Designer, Graphic Designer, Creative Designer",
        "eng",
    ),
    "analyst": StaticExpansion(
        "Analyst, Business Analyst, Data Analyst, Financial Analyst, Systems Analyst", "eng"
    ),
    "consultant": StaticExpansion(
        "Consultant, Business Consultant, Strategy Consultant, Management Consultant, Advisor",
        "eng",
    ),
    "director": StaticExpansion(
        "Director, Senior Director, Managing Director, Executive Director, Department Director",
        "eng",
    ),
    "VP": StaticExpansion(
        "VP, Vice President, Senior Vice President, Executive Vice President, SVP, EVP", "eng"
    ),
    "lead": StaticExpansion(
        "Lead, Team Lead, Tech Lead, Project Lead, Development Lead, Engineering Lead", "eng"
    ),
    # Common roles (French)
    "fondateur": StaticExpansion(
        "Fondateur, Co-Fondateur, Entrepreneur, Créateur, Chef d'entreprise, Founder", "fra"
    ),
    "ingénieur": StaticExpansion(
        "Ingénieur, Engineer, Développeur, Developer, Technicien, Ingénieur logiciel", "fra"
    ),
    "développeur": StaticExpansion(
        "Développeur, Developer, Programmeur, Ingénieur logiciel, Codeur, Software Engineer", "fra"
    ),
    "responsable": StaticExpansion(
        "Responsable, Manager, Chef de projet, Directeur, Team Lead, Superviseur", "fra"
    ),
    "directeur": StaticExpansion(
        "Directeur, Director, Manager, Responsable, Chef de service, Dirigeant", "fra"
    ),
    # Technologies and domains
    "AI": StaticExpansion(
        "AI, Artificial Intelligence, Machine Learning, ML, Deep Learning, Neural Networks", "eng"
    ),
    "blockchain": StaticExpansion(
        "Blockchain, Crypto, Web3, Cryptocurrency, DeFi, Distributed Ledger", "eng"
    ),
    "cloud": StaticExpansion(
        "Cloud, Cloud Computing, AWS, Azure, GCP, Cloud Infrastructure, SaaS", "eng"
    ),
    "data science": StaticExpansion(
        "Data Science, Data Analytics, Machine Learning, Big Data, Data Engineering, AI", "eng"
    ),
    "cybersecurity": StaticExpansion(
        "Cybersecurity, Security, InfoSec, Information Security, Network Security, Cyber Defense",
        "eng",
    ),
    "fintech": StaticExpansion(
        "Fintech, Financial Technology, Digital Banking, Payments, Finance Innovation, Banking Tech",
        "eng",
    ),
    "marketing": StaticExpansion(
        "Marketing, Digital Marketing, Growth Marketing, Marketing Strategy, Brand Marketing, Content Marketing",
        "eng",
    ),
    "sales": StaticExpansion(
        "Sales, Business Development, Account Manager, Sales Manager, Commercial, Revenue", "eng"
    ),
    "product": StaticExpansion(
        "Product, Product Manager, Product Management, Product Development, Product Strategy", "eng"
    ),
    "startup": StaticExpansion(
        "Startup, Tech Startup, Entrepreneur, Early Stage, Venture, Innovation", "eng"
    ),
    # Programming languages and frameworks
    "javascript": StaticExpansion(
        "JavaScript, JS, Node.js, React, Vue, Angular, TypeScript, Frontend, Backend", "eng"
    ),
    "python": StaticExpansion(
        "Python, Django, Flask, Data Science, Machine Learning, Backend, Automation", "eng"
    ),
    "java": StaticExpansion(
        "Java, Spring, Spring Boot, Enterprise, Backend, J2EE, Android", "eng"
    ),
    "react": StaticExpansion(
        "React, React.js, ReactJS, Frontend, JavaScript, Web Development, UI Development", "eng"
    ),
    "nodejs": StaticExpansion(
        "Node.js, NodeJS, JavaScript, Backend, Express, API Development, Server-side", "eng"
    ),
    # Industries
    "healthcare": StaticExpansion(
        "Healthcare, Health Tech, Medical, Pharma, Biotech, Digital Health, MedTech", "eng"
    ),
    "ecommerce": StaticExpansion(
        "E-commerce, Online Retail, Digital Commerce, Retail Tech, Shopping, Marketplace", "eng"
    ),
    "education": StaticExpansion(
        "Education, EdTech, E-Learning, Online Learning, Training, Academic, Teaching", "eng"
    ),
    "real estate": StaticExpansion(
        "Real Estate, Property, PropTech, Housing, Construction, Commercial Real Estate", "eng"
    ),
    "logistics": StaticExpansion(
        "Logistics, Supply Chain, Transportation, Delivery, Warehouse, Distribution", "eng"
    ),
}

_LOOKUP: dict[str, StaticExpansion] = {
    key.casefold(): expansion for key, expansion in COMMON_EXPANSIONS.items()
}


def lookup(normalized_query: str) -> StaticExpansion | None:
    """Find a static expansion for an already-normalized (case-folded) query."""
    return _LOOKUP.get(normalized_query)
