"""
Translations used by the payment handlers
Fee type descriptions and the texts of the auto-submitting payment form.
"""
from typing import Dict, Optional

MESSAGES: Dict[str, Dict[str, str]] = {
    "fi": {
        "fine_status_overdue": "Myöhästymismaksu",
        "fine_status_lost": "Kadonnut aineisto",
        "fine_status_damaged": "Vahingoittunut aineisto",
        "fine_status_reservation": "Varausmaksu",
        "fine_status_membership": "Jäsenmaksu",
        "fine_status_other": "Muu maksu",
        "status_overdue": "Myöhässä",
        "online_payment_go_to_pay": "Siirry maksamaan %%amount%%",
        "Please enable JavaScript.": "Ota JavaScript käyttöön.",
    },
    "sv": {
        "fine_status_overdue": "Förseningsavgift",
        "fine_status_lost": "Förlorat material",
        "fine_status_damaged": "Skadat material",
        "fine_status_reservation": "Reservationsavgift",
        "fine_status_membership": "Medlemsavgift",
        "fine_status_other": "Annan avgift",
        "status_overdue": "Försenad",
        "online_payment_go_to_pay": "Gå till betalning %%amount%%",
        "Please enable JavaScript.": "Aktivera JavaScript.",
    },
    "en": {
        "fine_status_overdue": "Overdue fine",
        "fine_status_lost": "Lost item",
        "fine_status_damaged": "Damaged item",
        "fine_status_reservation": "Hold fee",
        "fine_status_membership": "Membership fee",
        "fine_status_other": "Other fee",
        "status_overdue": "Overdue",
        "online_payment_go_to_pay": "Go to payment %%amount%%",
        "Please enable JavaScript.": "Please enable JavaScript.",
    },
}


def language_code(locale: str) -> str:
    """Two character language code from a locale such as 'fi-FI' or 'sv_SE'"""
    return locale.replace("_", "-").split("-", 1)[0].lower()


class Translator:
    """Looks up messages for one locale; unknown keys translate to themselves."""

    def __init__(self, locale: str = "fi", messages: Optional[Dict[str, Dict[str, str]]] = None):
        self.locale = locale
        catalog = MESSAGES if messages is None else messages
        self._messages = catalog.get(language_code(locale), {})

    def translate(self, key: str) -> str:
        return self._messages.get(key, key)
