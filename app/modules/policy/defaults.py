"""Rules seeded at startup when the policy table is empty."""

SAME_HOSPITAL = {"attribute": "hospitalId", "operator": "equals", "expected_from_resource": "hospitalId"}
CLINICAL = ["doctor", "nurse"]

DEFAULT_RULES: list[dict] = [
    # Patient demographics
    {"resource_type": "Patient", "action": "VIEW_PATIENT", "permitted_roles": ["admin", *CLINICAL],
     "predicates": [SAME_HOSPITAL], "requires_assignment": True},
    {"resource_type": "Patient", "action": "UPDATE_PATIENT", "permitted_roles": ["admin", *CLINICAL],
     "predicates": [SAME_HOSPITAL], "requires_assignment": True},
    {"resource_type": "Patient", "action": "SHARE_PATIENT_DATA", "permitted_roles": ["admin", "doctor"],
     "predicates": [SAME_HOSPITAL], "requires_assignment": True, "requires_consent": "dataSharing"},
    {"resource_type": "Patient", "action": "DELETE_PATIENT", "permitted_roles": ["admin"]},

    # Clinical records
    {"resource_type": "EHR", "action": "VIEW_EHR", "permitted_roles": ["admin", *CLINICAL],
     "predicates": [SAME_HOSPITAL], "requires_assignment": True},
    {"resource_type": "EHR", "action": "UPDATE_EHR", "permitted_roles": CLINICAL,
     "predicates": [SAME_HOSPITAL], "requires_assignment": True},
    {"resource_type": "EHR", "action": "SIGN_EHR", "permitted_roles": ["doctor"],
     "predicates": [SAME_HOSPITAL], "requires_assignment": True},
    {"resource_type": "EHR", "action": "DELETE_EHR", "permitted_roles": ["admin"]},

    # Research extracts need consent and a senior access level
    {"resource_type": "Report", "action": "EXPORT_DATA", "permitted_roles": ["admin", "doctor"],
     "predicates": [{"attribute": "accessLevel", "operator": "memberOf", "expected": [3, 4, 5]}],
     "requires_consent": "research"},
]
