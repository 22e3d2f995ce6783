"""
Field Schema Registry - static per-section definitions of addressable fields.

A section is either document-backed (it has a document schema and its fields
are flattened out of the document) or field-only (fields are written directly,
e.g. media asset slots).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type

from pydantic import BaseModel

from .errors import ConfigurationError
from . import section_models as models


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    LIST = "list"
    STRUCTURED = "structured"
    MEDIA = "media"


class SectionType(str, Enum):
    """Built-in section types."""
    IDEAL_CLIENT = "idealClient"
    MESSAGE = "message"
    STORY = "story"
    OFFER = "offer"
    LEAD_MAGNET = "leadMagnet"
    FACEBOOK_ADS = "facebookAds"
    EMAILS = "emails"
    FUNNEL_COPY = "funnelCopy"
    BIO = "bio"
    VSL = "vsl"
    SETTER_SCRIPT = "setterScript"
    SALES_SCRIPTS = "salesScripts"
    MEDIA = "media"


@dataclass(frozen=True)
class FieldDefinition:
    field_id: str
    label: str
    field_type: str
    default_order: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SectionDefinition:
    section_type: str
    title: str
    fields: Tuple[FieldDefinition, ...]
    document_model: Optional[Type[BaseModel]] = None

    @property
    def field_only(self) -> bool:
        return self.document_model is None

    @property
    def field_ids(self) -> List[str]:
        return [f.field_id for f in self.fields]

    @property
    def top_level_keys(self) -> List[str]:
        """Top-level document keys this section's shape knows about."""
        keys = []
        if self.document_model is not None:
            keys.extend(self.document_model.model_fields.keys())
        for f in self.fields:
            head = f.field_id.split(".")[0]
            if head not in keys:
                keys.append(head)
        return keys

    def field(self, field_id: str) -> Optional[FieldDefinition]:
        for f in self.fields:
            if f.field_id == field_id:
                return f
        return None


def _fields(*specs) -> Tuple[FieldDefinition, ...]:
    """Build field definitions from (field_id, label, field_type[, metadata]) tuples, in display order."""
    result = []
    for order, spec in enumerate(specs):
        field_id, label, field_type = spec[:3]
        metadata = spec[3] if len(spec) > 3 else {}
        result.append(FieldDefinition(field_id, label, FieldType(field_type).value, order, dict(metadata)))
    return tuple(result)


_EMAIL_SUBFIELDS = {"subfields": ["subject", "preview", "body"], "maxLength": {"subject": 150, "preview": 200, "body": 3000}}

BUILTIN_SECTIONS: Tuple[SectionDefinition, ...] = (
    SectionDefinition(SectionType.IDEAL_CLIENT.value, "Ideal Client Profile", _fields(
        ("bestIdealClient", "Best Ideal Client", "structured",
         {"subfields": ["ageLifeStage", "roleIdentity", "incomeRevenueRange", "familySituation", "location", "decisionStyle"]}),
        ("top3Challenges", "Top 3 Challenges", "list", {"minItems": 3, "maxItems": 3}),
        ("whatTheyWant", "What They Want (Top 3 Desires)", "list", {"minItems": 3, "maxItems": 3}),
        ("whatMakesThemPay", "What Makes Them Pay (Buying Triggers)", "list", {"minItems": 2}),
        ("howToTalkToThem", "How To Talk To Them (Their Language)", "textarea"),
    ), models.IdealClientDocument),
    SectionDefinition(SectionType.MESSAGE.value, "Signature Message", _fields(
        ("oneLineMessage", "One-Liner", "textarea", {"maxLength": 300}),
        ("spokenIntroduction", "30-Second Coffee Talk", "textarea"),
        ("powerPositioningLines", "Power Positioning Lines", "list", {"minItems": 5}),
    ), models.MessageDocument),
    SectionDefinition(SectionType.STORY.value, "Signature Story", _fields(
        ("bigIdea", "Big Idea (Core Concept)", "textarea"),
        ("networkingStory", "Networking Story (60-90 seconds)", "textarea"),
        ("stageStory", "Stage/Podcast Story (3-5 minutes)", "textarea"),
        ("socialPostVersion", "Social Media Post Version (150-220 words)", "textarea"),
    ), models.StoryDocument),
    SectionDefinition(SectionType.OFFER.value, "Signature Offer", _fields(
        ("offerMode", "Offer Mode", "text"),
        ("offerName", "Branded System Name", "text", {"maxLength": 100}),
        ("sevenStepBlueprint", "7-Step Blueprint", "list",
         {"minItems": 7, "maxItems": 7, "itemType": "structured",
          "subfields": ["stepName", "whatItIs", "problemSolved", "outcomeCreated"]}),
        ("tier1WhoItsFor", "Tier 1: Who It's For", "textarea"),
        ("tier1Promise", "Tier 1: The Promise", "textarea"),
        ("tier1Timeframe", "Tier 1: Timeframe", "text"),
        ("tier1Deliverables", "Tier 1: Deliverables", "textarea"),
        ("tier1RecommendedPrice", "Tier 1: Recommended Price", "text"),
    ), models.OfferDocument),
    SectionDefinition(SectionType.LEAD_MAGNET.value, "Free Gift", _fields(
        ("mainTitle", "Lead Magnet Title", "text", {"maxLength": 150}),
        ("subtitle", "Subtitle / Hook", "textarea"),
        ("freeGift.title", "Free Gift Title", "text", {"maxLength": 150}),
        ("freeGift.format", "Free Gift Format", "text"),
        ("coreDeliverables", "Core Deliverables (5 sections)", "list", {"minItems": 5, "maxItems": 5}),
        ("optInHeadline", "Opt-In Page Headline", "textarea"),
        ("bullets", "Benefit Bullets (4 points)", "list", {"minItems": 4, "maxItems": 4}),
        ("ctaButtonText", "CTA Button Text", "text", {"maxLength": 40}),
    ), models.LeadMagnetDocument),
    SectionDefinition(SectionType.FACEBOOK_ADS.value, "Ad Copy", _fields(
        ("shortAd1Headline", "Short Ad #1: Headline", "text", {"maxLength": 40}),
        ("shortAd1PrimaryText", "Short Ad #1: Primary Text", "textarea"),
        ("shortAd2Headline", "Short Ad #2: Headline", "text", {"maxLength": 40}),
        ("shortAd2PrimaryText", "Short Ad #2: Primary Text", "textarea"),
        ("longAdPrimaryText", "Long Ad: Primary Text", "textarea"),
        ("adCopy.freeGiftName", "Free Gift Name (all ads)", "text"),
    ), models.FacebookAdsDocument),
    SectionDefinition(SectionType.EMAILS.value, "Email Sequence", _fields(
        ("email1", "Day 1 - Gift Delivery + Welcome", "structured", _EMAIL_SUBFIELDS),
        ("email2", "Day 2 - Daily Tip #1", "structured", _EMAIL_SUBFIELDS),
        ("email3", "Day 3 - Daily Tip #2", "structured", _EMAIL_SUBFIELDS),
        ("email4", "Day 4 - Daily Tip #3", "structured", _EMAIL_SUBFIELDS),
        ("email5", "Day 5 - Daily Tip #4", "structured", _EMAIL_SUBFIELDS),
    ), models.EmailsDocument),
    SectionDefinition(SectionType.FUNNEL_COPY.value, "Funnel Page Copy", _fields(
        ("optInHeadlines", "Opt-In Page Headlines (5 options)", "list", {"minItems": 5, "maxItems": 5}),
        ("optInPageCopy", "Opt-In Page Copy", "textarea"),
        ("thankYouPageCopy", "Thank You Page Copy", "textarea"),
        ("salesPageCopy", "Sales Page Copy", "textarea"),
        ("aboutSection", "About Section", "textarea"),
    ), models.FunnelCopyDocument),
    SectionDefinition(SectionType.BIO.value, "Professional Bio", _fields(
        ("name", "Name", "text"),
        ("founderName", "Founder Name", "text"),
        ("fullBio", "Full Bio", "textarea"),
        ("shortBio", "Short Bio", "textarea", {"maxLength": 600}),
        ("speakerBio", "Speaker Bio", "textarea"),
        ("keyAchievements", "Key Achievements", "list", {"minItems": 3}),
    ), models.BioDocument),
    SectionDefinition(SectionType.VSL.value, "Video Sales Letter", _fields(
        ("hookOptions", "Hook Options (3 openings)", "list", {"minItems": 3, "maxItems": 3}),
        ("whoItsFor", "Who This Video Is For", "textarea"),
        ("openingStory", "Opening Story (Personal Connection)", "textarea"),
        ("problemAgitation", "Problem Agitation", "textarea"),
        ("methodReveal", "Your Method/Solution", "textarea"),
        ("offerPresentation", "Offer Presentation", "textarea"),
        ("strongCTA", "Strong Call to Action", "textarea"),
    ), models.VslDocument),
    SectionDefinition(SectionType.SETTER_SCRIPT.value, "Setter Call Script", _fields(
        ("callGoal", "Goal of This Call", "textarea"),
        ("openingOptIn", "Opening - Free Gift Opt-In", "textarea"),
        ("permissionPurpose", "Permission + Purpose", "textarea"),
        ("bookCall", "Book Call Live", "textarea"),
        ("objectionHandling", "Objection Handling (6 Common)", "list",
         {"minItems": 6, "itemType": "structured", "subfields": ["objection", "response", "reframe"]}),
    ), models.SetterScriptDocument),
    SectionDefinition(SectionType.SALES_SCRIPTS.value, "Closer Sales Script", _fields(
        ("discoveryQuestions", "Part 1 - 7 Core Discovery Questions", "list",
         {"minItems": 7, "itemType": "structured", "subfields": ["label", "question", "lookingFor", "ifVague"]}),
        ("commitmentQuestions", "Part 2 - Commitment & Cost Questions", "structured",
         {"subfields": ["commitmentScale", "costOfInaction"]}),
        ("fullGuidedScript", "Part 4 - Full Guided Closer Script", "structured"),
        ("objectionHandling", "Part 5 - Objection Handling (10 Objections)", "list",
         {"minItems": 10, "itemType": "structured", "subfields": ["objection", "response", "followUp", "ifStillHesitate"]}),
    ), models.SalesScriptsDocument),
    # Field-only: no document, asset slots are written directly
    SectionDefinition(SectionType.MEDIA.value, "Media Assets", _fields(
        ("logo", "Business Logo", "media", {"mediaKind": "image"}),
        ("bio_author", "Bio / Author Photo", "media", {"mediaKind": "image"}),
        ("product_mockup", "Product Mockup", "media", {"mediaKind": "image"}),
        ("results_image", "Results / Proof", "media", {"mediaKind": "image"}),
        ("main_vsl", "Main VSL Video", "media", {"mediaKind": "video_url"}),
        ("testimonial_video", "Testimonial Video", "media", {"mediaKind": "video_url"}),
    )),
)


class SectionRegistry:
    """Lookup of section definitions. Closed once built; extra sections are passed at construction."""

    def __init__(self, sections: Iterable[SectionDefinition] = BUILTIN_SECTIONS,
                 extra: Iterable[SectionDefinition] = ()):
        self._sections: Dict[str, SectionDefinition] = {}
        for definition in list(sections) + list(extra):
            self.register(definition)

    def register(self, definition: SectionDefinition) -> None:
        section_type = _type_name(definition.section_type)
        if section_type in self._sections:
            raise ConfigurationError(f"Section type already registered: {section_type}")
        ids = definition.field_ids
        if len(ids) != len(set(ids)):
            raise ConfigurationError(f"Duplicate field ids in section {section_type}")
        self._sections[section_type] = definition

    def is_known(self, section_type) -> bool:
        return _type_name(section_type) in self._sections

    def get_section(self, section_type) -> SectionDefinition:
        """Get a section definition or raise ConfigurationError."""
        definition = self._sections.get(_type_name(section_type))
        if definition is None:
            raise ConfigurationError(f"Unknown section type: {section_type}")
        return definition

    def fields_for(self, section_type) -> List[FieldDefinition]:
        return sorted(self.get_section(section_type).fields, key=lambda f: (f.default_order, f.field_id))

    def field_definition(self, section_type, field_id: str) -> Optional[FieldDefinition]:
        return self.get_section(section_type).field(field_id)

    def sections(self) -> List[str]:
        return list(self._sections.keys())

    @staticmethod
    def default_value(definition: FieldDefinition) -> Any:
        """Empty value for a field, used when instantiating defaults."""
        if definition.field_type in (FieldType.TEXT.value, FieldType.TEXTAREA.value):
            return ""
        if definition.field_type == FieldType.LIST.value:
            min_items = definition.metadata.get("minItems", 0)
            if definition.metadata.get("itemType") == "structured":
                return [{} for _ in range(min_items)]
            return ["" for _ in range(min_items)]
        if definition.field_type == FieldType.STRUCTURED.value:
            return {}
        return None


def _type_name(section_type) -> str:
    if isinstance(section_type, Enum):
        return section_type.value
    return section_type


# Global registry instance
registry = SectionRegistry()


def fields_for(section_type) -> List[FieldDefinition]:
    """Ordered field definitions of a section from the global registry."""
    return registry.fields_for(section_type)


def get_section(section_type) -> SectionDefinition:
    return registry.get_section(section_type)


def is_known(section_type) -> bool:
    return registry.is_known(section_type)
