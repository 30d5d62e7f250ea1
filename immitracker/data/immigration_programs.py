"""
Immigration program catalog.

Default milestone lists seeded by ``MilestoneService.seed_all_programs``
(``flask seed-milestones``, ``POST /api/v1/milestones/initialize``).

    Temporary Residence   visitor_visa, study_permit, work_permit
    Permanent Residence   express_entry, pnp, family_sponsorship
"""

# ── Shared milestone runs ───────────────────────────────────────────────────
_BIOMETRICS = [
    "Biometrics Instruction Letter Received",
    "Biometrics Completed",
]
_MEDICAL = [
    "Medical Exam Required",
    "Medical Exam Completed",
]
_DOCUMENTS = [
    "Additional Documents Requested",
    "Additional Documents Submitted",
]


# ═════════════════════════════════════════════════════════════════════════════
# PROGRAMS
# ═════════════════════════════════════════════════════════════════════════════

IMMIGRATION_PROGRAMS = [
    {
        "id": "visitor_visa",
        "program_name": "Visitor Visa (TRV)",
        "category": "Temporary Residence",
        "description": (
            "Allows foreign nationals from visa-required countries to visit Canada "
            "temporarily for tourism, family visits, or business."
        ),
        "milestone_updates": [
            "Application Submission",
            "Biometrics Instruction Letter (if required)",
            "Biometrics Completion",
            "Additional Document Request/Interview (if applicable)",
            "Passport Request for Visa Stamping",
            "Final Decision",
        ],
    },
    {
        "id": "study_permit",
        "program_name": "Study Permit",
        "category": "Temporary Residence",
        "description": "Permits international students to study at designated learning institutions in Canada.",
        "milestone_updates": [
            "Application Submitted",
            *_BIOMETRICS,
            *_DOCUMENTS,
            *_MEDICAL,
            "Decision Made",
        ],
    },
    {
        "id": "work_permit",
        "program_name": "Work Permit",
        "category": "Temporary Residence",
        "description": "Allows foreign nationals to work temporarily in Canada with a valid job offer.",
        "milestone_updates": [
            "Application Submitted",
            *_BIOMETRICS,
            *_DOCUMENTS,
            *_MEDICAL,
            "Decision Made",
        ],
    },
    {
        "id": "express_entry",
        "program_name": "Express Entry",
        "category": "Permanent Residence",
        "description": "Federal skilled worker program for permanent residence in Canada.",
        "milestone_updates": [
            "Profile Created",
            "ITA Received",
            "Application Submitted",
            "AOR Received",
            *_BIOMETRICS,
            *_MEDICAL,
            *_DOCUMENTS,
            "COPR Issued",
        ],
    },
    {
        "id": "pnp",
        "program_name": "Provincial Nominee Program",
        "category": "Permanent Residence",
        "description": "Provincial immigration programs for permanent residence in specific Canadian provinces.",
        "milestone_updates": [
            "Provincial Application Submitted",
            "Nomination Certificate Received",
            "Federal Application Submitted",
            "AOR Received",
            *_BIOMETRICS,
            *_MEDICAL,
            *_DOCUMENTS,
            "COPR Issued",
        ],
    },
    {
        "id": "family_sponsorship",
        "program_name": "Family Sponsorship",
        "category": "Permanent Residence",
        "description": (
            "Immigration programs for Canadian citizens and permanent residents "
            "to sponsor their family members."
        ),
        "milestone_updates": [
            "Sponsorship Application Submitted",
            "Sponsorship Approval",
            "Main Application Submitted",
            "AOR Received",
            *_BIOMETRICS,
            *_MEDICAL,
            "Background Check Initiated",
            "Background Check Completed",
            *_DOCUMENTS,
            "Interview (if required)",
            "COPR Issued",
        ],
    },
]
