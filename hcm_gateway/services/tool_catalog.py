"""Built-in Oracle HCM absence-management tools, expressed as registry data."""

from hcm_gateway.models.tool import ParameterSpec, ResponseMapping, ToolDescriptor

NUMERIC_ID = r"^[0-9]+$"

HCM_PERSON_ID = ParameterSpec(
    type="string",
    required=True,
    description="Unique PersonID in Oracle HCM, e.g. 300000578701661",
    pattern=NUMERIC_ID,
)

PERSON_ID_FROM_EMPLOYEE_ID = ToolDescriptor(
    name="get_oracle_hcm_person_id_from_westpac_id",
    description=(
        "Get Oracle HCM PersonId for a provided Westpac M/F/L id. Example: M061230 is a Westpac "
        "Employee ID, but its corresponding PersonId in Oracle HCM is needed for API/or other Tool "
        "calls to HCM."
    ),
    http_method="GET",
    path_template="/publicWorkers",
    query_template={
        "q": "assignments.WorkerNumber='{wbc_employee_id}'",
        "onlyData": "true",
        "limit": "1",
    },
    parameters={
        "wbc_employee_id": ParameterSpec(
            type="string",
            required=True,
            transform="upper",
            pattern=r"^[A-Za-z0-9]+$",
            description="Unique Westpac Employee ID, e.g. M061230",
        ),
    },
    response_mapping=ResponseMapping(
        kind="project",
        field_map={"PersonId": "PersonId"},
        first_only=True,
        not_found_message="PersonID not found for Westpac Employee ID: {wbc_employee_id}",
    ),
)

ABSENCE_TYPES = ToolDescriptor(
    name="get_absence_types_for_employee_hcm_person_id",
    description=(
        "Get the absence type IDs, and Employer IDs which are available in Oracle HCM for a "
        "particular employee, based on their PersonId. This data is used during projection of "
        "employee absence balances."
    ),
    http_method="GET",
    path_template="/absenceTypesLOV",
    query_template={
        "onlyData": "true",
        "finder": "findByWord;PersonId={hcm_person_id}",
    },
    parameters={"hcm_person_id": HCM_PERSON_ID},
    response_mapping=ResponseMapping(
        kind="project",
        field_map={
            "AbsenceTypeId": "AbsenceTypeId",
            "EmployerId": "EmployerId",
            "AbsenceTypeName": "AbsenceTypeName",
        },
        result_key="absence_types",
    ),
)

ABSENCE_BALANCES = ToolDescriptor(
    name="get_all_absence_balances_for_employee_hcm_person_id",
    description=(
        "Get all available absence balances for a particular employee, based on their PersonId "
        "(the balances are based off a system calculation date, and not projected balances)."
    ),
    http_method="GET",
    path_template="/planBalances",
    query_template={
        "onlyData": "true",
        "q": "personId={hcm_person_id};planDisplayStatusFlag=true",
    },
    parameters={"hcm_person_id": HCM_PERSON_ID},
    framework_version_header=False,
    response_mapping=ResponseMapping(
        kind="project",
        field_map={
            "planName": "planName",
            "carryOver": "multiYearCarryOverFlag",
            "planStatus": "planStatusMeaning",
            "formattedBalance": "formattedBalance",
            "balanceCalculationDate": "balanceCalculationDate",
        },
        date_fields=["balanceCalculationDate"],
        result_key="absence_balances",
    ),
)

PROJECTED_BALANCE = ToolDescriptor(
    name="get_projected_balance",
    description=(
        "Get projected balance for a particular PersonId as well as a projection date/effective "
        "date in DD-MM-YYYY format (Balance As Of Date), for a particular AbsenceTypeId"
    ),
    http_method="POST",
    path_template="/absences/action/loadProjectedBalance",
    body_template={
        "entry": {
            "personId": "{hcm_person_id}",
            "legalEntityId": "{legal_entity_id}",
            "absenceTypeId": "{absence_type_id}",
            "openEndedFlag": "N",
            "startDate": "{balance_as_of_date}",
            "endDate": "{balance_as_of_date}",
            "uom": "H",
            "duration": 7.6,
            "startDateDuration": 7.6,
            "endDateDuration": 7.6,
        }
    },
    parameters={
        "hcm_person_id": HCM_PERSON_ID,
        "absence_type_id": ParameterSpec(
            type="string",
            required=True,
            pattern=NUMERIC_ID,
            description="The Absence Type ID for the absence balance request, e.g. 300001058681790.",
        ),
        "legal_entity_id": ParameterSpec(
            type="string",
            required=True,
            pattern=NUMERIC_ID,
            description="The Legal Entity ID for the absence balance request, e.g. 300000001487001.",
        ),
        "balance_as_of_date": ParameterSpec(
            type="date",
            input_format="%d-%m-%Y",
            output_format="%Y-%m-%d",
            default_today=True,
            description=(
                "Effective date (Balance As Of Date) for the balance in DD-MM-YYYY format, "
                "e.g. 31-12-2025. Defaults to today's date if not provided."
            ),
        ),
    },
    timeout=60.0,
    response_mapping=ResponseMapping(
        kind="extract",
        path="result.formattedProjectedBalance",
        result_key="projected_balance",
        echo_arguments=["absence_type_id"],
    ),
)

HCM_TOOLS = [
    ABSENCE_BALANCES,
    PROJECTED_BALANCE,
    ABSENCE_TYPES,
    PERSON_ID_FROM_EMPLOYEE_ID,
]
