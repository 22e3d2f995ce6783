"""
Document schemas for the built-in section types.

Each model describes the top-level shape of one section's nested document.
Unknown top-level keys are ignored by the models and stripped by the validator.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class SectionDocumentModel(BaseModel):
    """Base for section document schemas."""
    model_config = ConfigDict(extra="ignore")


class IdealClientPersona(BaseModel):
    model_config = ConfigDict(extra="allow")

    ageLifeStage: Optional[str] = None
    roleIdentity: Optional[str] = None
    incomeRevenueRange: Optional[str] = None
    familySituation: Optional[str] = None
    location: Optional[str] = None
    decisionStyle: Optional[str] = None


class IdealClientDocument(SectionDocumentModel):
    bestIdealClient: IdealClientPersona
    top3Challenges: List[str]
    whatTheyWant: Optional[List[str]] = None
    whatMakesThemPay: Optional[List[str]] = None
    howToTalkToThem: Optional[str] = None


class MessageDocument(SectionDocumentModel):
    oneLineMessage: str
    spokenIntroduction: Optional[str] = None
    powerPositioningLines: Optional[List[str]] = None


class StoryDocument(SectionDocumentModel):
    bigIdea: str
    networkingStory: Optional[str] = None
    stageStory: Optional[str] = None
    socialPostVersion: Optional[str] = None


class BlueprintStep(BaseModel):
    model_config = ConfigDict(extra="allow")

    stepName: str
    whatItIs: Optional[str] = None
    problemSolved: Optional[str] = None
    outcomeCreated: Optional[str] = None


class OfferDocument(SectionDocumentModel):
    offerName: str
    offerMode: Optional[str] = None
    sevenStepBlueprint: Optional[List[BlueprintStep]] = None
    tier1WhoItsFor: Optional[str] = None
    tier1Promise: Optional[str] = None
    tier1Timeframe: Optional[str] = None
    tier1Deliverables: Optional[str] = None
    tier1RecommendedPrice: Optional[str] = None

    @field_validator("offerMode")
    @classmethod
    def validate_offer_mode(cls, v):
        if v is not None and v not in ("Transformation", "Service Delivery"):
            raise ValueError("offerMode must be 'Transformation' or 'Service Delivery'")
        return v


class FreeGift(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    format: Optional[str] = None


class LeadMagnetDocument(SectionDocumentModel):
    mainTitle: str
    subtitle: Optional[str] = None
    freeGift: Optional[FreeGift] = None
    coreDeliverables: Optional[List[str]] = None
    optInHeadline: Optional[str] = None
    bullets: Optional[List[str]] = None
    ctaButtonText: Optional[str] = None


class AdCopy(BaseModel):
    model_config = ConfigDict(extra="allow")

    freeGiftName: Optional[str] = None


class FacebookAdsDocument(SectionDocumentModel):
    shortAd1Headline: Optional[str] = None
    shortAd1PrimaryText: Optional[str] = None
    shortAd2Headline: Optional[str] = None
    shortAd2PrimaryText: Optional[str] = None
    longAdPrimaryText: Optional[str] = None
    adCopy: Optional[AdCopy] = None


class Email(BaseModel):
    model_config = ConfigDict(extra="allow")

    subject: str
    preview: Optional[str] = None
    body: str


class EmailsDocument(SectionDocumentModel):
    email1: Email
    email2: Optional[Email] = None
    email3: Optional[Email] = None
    email4: Optional[Email] = None
    email5: Optional[Email] = None


class FunnelCopyDocument(SectionDocumentModel):
    optInHeadlines: Optional[List[str]] = None
    optInPageCopy: Optional[str] = None
    thankYouPageCopy: Optional[str] = None
    salesPageCopy: Optional[str] = None
    aboutSection: Optional[str] = None


class BioDocument(SectionDocumentModel):
    name: Optional[str] = None
    founderName: Optional[str] = None
    fullBio: str
    shortBio: Optional[str] = None
    speakerBio: Optional[str] = None
    keyAchievements: Optional[List[str]] = None


class VslDocument(SectionDocumentModel):
    hookOptions: Optional[List[str]] = None
    whoItsFor: Optional[str] = None
    openingStory: Optional[str] = None
    problemAgitation: Optional[str] = None
    methodReveal: Optional[str] = None
    offerPresentation: Optional[str] = None
    strongCTA: Optional[str] = None


class SetterScriptDocument(SectionDocumentModel):
    callGoal: Optional[str] = None
    openingOptIn: Optional[str] = None
    permissionPurpose: Optional[str] = None
    bookCall: Optional[str] = None
    objectionHandling: Optional[List[Dict[str, Any]]] = None


class SalesScriptsDocument(SectionDocumentModel):
    discoveryQuestions: Optional[List[Dict[str, Any]]] = None
    commitmentQuestions: Optional[Dict[str, Any]] = None
    fullGuidedScript: Optional[Dict[str, Any]] = None
    objectionHandling: Optional[List[Dict[str, Any]]] = None
