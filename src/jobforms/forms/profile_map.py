from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple


@dataclass(frozen=True)
class ProfileMapping:
    keywords: Tuple[str, ...]
    path: str
    excludes: Tuple[str, ...] = ()

    def matches(self, hay: str) -> bool:
        if any(x in hay for x in self.excludes):
            return False
        return any(k in hay for k in self.keywords)


# Ordered; the first matching row wins.
DEFAULT_PROFILE_MAPPINGS: Tuple[ProfileMapping, ...] = (
    ProfileMapping(("first name", "given name", "firstname"), "personalInfo.firstName"),
    ProfileMapping(("last name", "family name", "surname", "lastname"), "personalInfo.lastName"),
    ProfileMapping(("full name",), "personalInfo.fullName", excludes=("first", "last")),
    ProfileMapping(("email", "e-mail"), "personalInfo.email"),
    ProfileMapping(("phone", "mobile", "telephone"), "personalInfo.phone"),
    ProfileMapping(("address", "street"), "personalInfo.address"),
    ProfileMapping(("city",), "personalInfo.address.city"),
    ProfileMapping(("state", "province"), "personalInfo.address.state"),
    ProfileMapping(("zip", "postal"), "personalInfo.address.zipCode"),
    ProfileMapping(("country",), "personalInfo.address.country"),
    ProfileMapping(("resume", "cv"), "documents.resumes[0]"),
    ProfileMapping(("cover letter",), "documents.coverLetters[0]"),
    ProfileMapping(("linkedin", "profile url"), "professionalInfo.linkedinUrl"),
    ProfileMapping(("website", "portfolio"), "professionalInfo.portfolioUrl"),
    ProfileMapping(("current company", "employer"), "professionalInfo.workExperience[0].company"),
    ProfileMapping(("current title", "job title"), "professionalInfo.workExperience[0].title"),
    ProfileMapping(("university", "school", "education"), "professionalInfo.education[0].institution"),
    ProfileMapping(("degree",), "professionalInfo.education[0].degree"),
    ProfileMapping(("major", "field of study"), "professionalInfo.education[0].fieldOfStudy"),
    ProfileMapping(("graduation", "grad date"), "professionalInfo.education[0].graduationDate"),
    ProfileMapping(("work authorization", "authorized to work"), "preferences.defaultAnswers.workAuthorization"),
    ProfileMapping(("sponsorship",), "preferences.defaultAnswers.sponsorship"),
    ProfileMapping(("start date", "available to start"), "preferences.defaultAnswers.startDate"),
    ProfileMapping(("salary", "compensation"), "preferences.defaultAnswers.salaryExpectation"),
    ProfileMapping(("notice period", "availability"), "preferences.defaultAnswers.noticePeriod"),
)


def map_profile_field(
    label: str,
    placeholder: Optional[str] = None,
    mappings: Sequence[ProfileMapping] = DEFAULT_PROFILE_MAPPINGS,
) -> Optional[str]:
    hay = f"{label} {placeholder or ''}".lower()
    for row in mappings:
        if row.matches(hay):
            return row.path
    return None
