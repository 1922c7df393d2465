import locale
import logging
from dataclasses import dataclass, field
from enum import StrEnum, auto

from modinstall.game.data import OWN_VERSION
from modinstall.helpers.file_ops import get_internal_file_path, read_yaml

logger = logging.getLogger("modinstall")


class SupportedLanguages(StrEnum):
    ENG = auto()
    RU = auto()

    @classmethod
    def list_values(cls) -> list[str]:
        return [c.value for c in cls]

    @classmethod
    def _missing_(cls, value: str) -> str | None:
        value = value.lower()
        for member in cls:
            if member == value:
                return member
        return None


# every supported language has its own strings file, keys have to match across all of them
STRING_FILES = {
    SupportedLanguages.ENG: "localisation/strings_eng.yaml",
    SupportedLanguages.RU: "localisation/strings_rus.yaml",
}


def load_strings() -> dict[str, dict[str, str]]:
    """Return {key: {lang: text}} for all supported languages."""
    by_lang = {lang: read_yaml(get_internal_file_path(path)) for lang, path in STRING_FILES.items()}
    reference_keys = by_lang[SupportedLanguages.ENG].keys()
    for lang, strings in by_lang.items():
        if strings.keys() != reference_keys:
            missing = sorted(reference_keys ^ strings.keys())
            raise ValueError(f"Localisation strings for '{lang}' don't match english ones: {missing}")

    return {key: {lang.value: by_lang[lang][key] for lang in by_lang} for key in reference_keys}


def get_default_lang() -> str:
    def_locale_tuple = locale.getlocale()
    if not isinstance(def_locale_tuple[0], str):
        return SupportedLanguages.ENG.value

    if def_locale_tuple[0].replace("-", "_").startswith(("Russian_", "ru_")):
        return SupportedLanguages.RU.value
    return SupportedLanguages.ENG.value


@dataclass
class LocalizationService:
    language: str
    strings: dict[str, dict[str, str]] = field(repr=False)

    def translate(self, str_name: str, **kwargs: str) -> str:
        variants = self.strings.get(str_name)
        if variants is None:
            logger.warning(f"Localized string '{str_name}' not found!")
            return f"Unlocalised string '{str_name}'"

        text = variants.get(self.language, variants[SupportedLanguages.ENG.value])
        text = text.replace("{OWN_VERSION}", OWN_VERSION)
        return text.format(**kwargs) if kwargs else text


stored = LocalizationService(get_default_lang(), load_strings())


def tr(str_name: str, **kwargs: str) -> str:
    """Return localised string in the current language, falling back to english."""
    return stored.translate(str_name, **kwargs)


def get_current_lang() -> str:
    return stored.language


def set_current_lang(lang: str) -> bool:
    if lang in SupportedLanguages.list_values():
        stored.language = lang
        return True
    logger.warning(f"Unsupported language '{lang}', keeping '{stored.language}'")
    return False
