"""Output language detection for generated briefings and emails."""

import re
import unicodedata
from typing import Optional

from ..models import BusinessProfile

LANG_PORTUGUESE = "pt-BR"
LANG_ENGLISH = "en"

BRAZILIAN_PLACES = [
    "brazil", "brasil",
    "sao paulo", "rio de janeiro", "belo horizonte", "minas gerais",
    "salvador", "bahia", "brasilia", "curitiba", "parana",
    "recife", "pernambuco", "fortaleza", "ceara",
    "porto alegre", "rio grande do sul", "manaus", "amazonas",
    "belem", "goiania", "goias", "campinas", "santos", "guarulhos",
    "florianopolis", "santa catarina", "vitoria", "espirito santo",
    "natal", "rio grande do norte", "joao pessoa", "paraiba",
    "maceio", "alagoas", "teresina", "piaui",
    "campo grande", "mato grosso do sul", "cuiaba", "mato grosso",
    "aracaju", "sergipe", "sao luis", "maranhao",
    "porto velho", "rondonia", "macapa", "amapa",
    "boa vista", "roraima", "palmas", "tocantins", "rio branco", "acre",
]

# State codes are only matched as whole tokens ("SP", "Recife - PE").
BRAZILIAN_STATE_CODES = {
    "ac", "al", "ap", "am", "ba", "ce", "df", "es", "go", "ma", "mt", "ms",
    "mg", "pa", "pb", "pr", "pe", "pi", "rj", "rn", "rs", "ro", "rr", "sc",
    "sp", "se", "to",
}

ENGLISH_INDICATORS = [
    " the ", " and ", " with ", " our ", " your ", " we ", " you ",
    " for ", " that ", " this ", " from ", " have ", " are ", " will ",
    " can ", " help ", " business ", " company ", " service ", " provide ",
    " solution ", " customer ", " client ", " team ", " work ",
]

PORTUGUESE_INDICATORS = [
    " que ", " para ", " com ", " uma ", " seu ", " sua ", " nos ", " nós ",
    " você ", " empresa ", " serviço ", " cliente ", " negócio ", " solução ",
    " nossa ", " nosso ", " trabalho ", " equipe ", " ajuda ", " oferece ",
    " através ", " sobre ", " como ", " mais ", " está ", " são ", " pelo ",
]

PORTUGUESE_CHARS = set("ãõçéêáóúí")


def remove_accents(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(c for c in normalized if not unicodedata.combining(c))


def is_english_content(profile: BusinessProfile) -> bool:
    """Score the profile's free text for English vs Portuguese markers."""
    content = " ".join(
        part for part in (
            profile.company_description,
            profile.problem_solved,
            profile.success_case,
        ) if part
    ).lower()
    if not content:
        return False
    content = f" {content} "

    english_score = sum(1 for word in ENGLISH_INDICATORS if word in content)
    portuguese_score = sum(1 for word in PORTUGUESE_INDICATORS if word in content)
    portuguese_score += sum(1 for ch in content if ch in PORTUGUESE_CHARS)

    return english_score > portuguese_score + 2


def is_brazilian_location(location: str) -> bool:
    normalized = remove_accents(location.lower())
    if any(place in normalized for place in BRAZILIAN_PLACES):
        return True
    tokens = set(re.findall(r"[a-z]+", normalized))
    return bool(tokens & BRAZILIAN_STATE_CODES)


def detect_language(profile: Optional[BusinessProfile], location: str = "") -> str:
    """Pick the output language for generated content.

    Order of precedence: the profile's explicit language, then the language
    the profile is written in, then whether the lead is outside Brazil.
    Defaults to Brazilian Portuguese.
    """
    if profile is not None and profile.language:
        lang = profile.language.lower()
        if "en" in lang:
            return LANG_ENGLISH
        if "pt" in lang:
            return LANG_PORTUGUESE

    if profile is not None and is_english_content(profile):
        return LANG_ENGLISH

    if location and not is_brazilian_location(location):
        return LANG_ENGLISH

    return LANG_PORTUGUESE
