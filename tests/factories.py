"""
Builders for the meal-order form used across the test suite.
"""

from datetime import UTC, datetime, timedelta

from formdesk.followup import Document, Paragraph, Table, TableRow
from formdesk.models import (
    AutoIncrement,
    DedupRule,
    FieldDescriptor,
    FieldType,
    FollowupConfig,
    FormSchema,
    LineItemGroupSchema,
    LookupRef,
    MatchMode,
    RecipientLookup,
    StatusTransitions,
    SubGroupSchema,
)

FORM_KEY = "orders"

MEALS = [
    {"Name": "Vegan", "Chef": "chef@example.com", "Kcal": "650"},
    {"Name": "Classic", "Chef": "", "Kcal": "900"},
]


class TickingClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 3, 1, 9, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


# =============================================================================
# SCHEMA AND VALUES
# =============================================================================


def make_schema() -> FormSchema:
    """
    Meal order form:
    - top-level fields incl. an auto-increment number and a lookup field
    - ITEMS group with an ING subgroup (allergens per dish)
    """
    ingredients = SubGroupSchema(
        id="ING",
        labels={"EN": "Ingredients", "FR": "Ingrédients"},
        fields=[
            FieldDescriptor(id="ALLERGEN", type=FieldType.TEXT, labels={"EN": "Allergen", "FR": "Allergène"}),
            FieldDescriptor(id="WEIGHT", type=FieldType.NUMBER, labels={"EN": "Weight"}),
        ],
    )
    items = LineItemGroupSchema(
        fields=[
            FieldDescriptor(id="DISH", type=FieldType.TEXT, labels={"EN": "Dish", "FR": "Plat"}),
            FieldDescriptor(id="QTY", type=FieldType.NUMBER, labels={"EN": "Quantity", "FR": "Quantité"}),
            FieldDescriptor(id="COURSE", type=FieldType.CHOICE, labels={"EN": "Course"}),
        ],
        sub_groups=[ingredients],
    )
    return FormSchema(
        form_key=FORM_KEY,
        title="Orders",
        fields=[
            FieldDescriptor(
                id="NAME",
                type=FieldType.TEXT,
                labels={"EN": "Customer Name", "FR": "Nom du client", "NL": "Klantnaam"},
            ),
            FieldDescriptor(id="EMAIL", type=FieldType.TEXT, labels={"EN": "Email"}),
            FieldDescriptor(
                id="ORDER_NO",
                type=FieldType.TEXT,
                labels={"EN": "Order number"},
                auto_increment=AutoIncrement(prefix="ORD-", pad_length=4),
            ),
            FieldDescriptor(id="DELIVERY_DATE", type=FieldType.DATE, labels={"EN": "Delivery date"}),
            FieldDescriptor(
                id="MEAL",
                type=FieldType.TEXT,
                labels={"EN": "Meal"},
                lookup=LookupRef(source="Meals", key_column="Name"),
            ),
            FieldDescriptor(id="ALLERGIES", type=FieldType.CHECKBOX, labels={"EN": "Allergies"}),
            FieldDescriptor(id="PHOTO", type=FieldType.FILE, labels={"EN": "Photo"}),
            FieldDescriptor(id="ITEMS", type=FieldType.LINE_ITEM_GROUP, labels={"EN": "Items"}, group=items),
            FieldDescriptor(id="SUBMIT", type=FieldType.BUTTON, labels={"EN": "Submit"}),
        ],
    )


def sample_values(**overrides) -> dict:
    values = {
        "NAME": "Ann Smith",
        "EMAIL": "ann@example.com",
        "DELIVERY_DATE": "2024-03-05",
        "MEAL": "Vegan",
        "ITEMS": [
            {
                "DISH": "Soup",
                "QTY": "1,5",
                "COURSE": "Starter",
                "ING": [{"ALLERGEN": "Milk", "WEIGHT": "100"}, {"ALLERGEN": "Peanuts", "WEIGHT": "20"}],
            },
            {"DISH": "Cake", "QTY": "2", "COURSE": "Dessert", "ING": [{"ALLERGEN": "Milk", "WEIGHT": "50"}]},
            {"DISH": "Bread", "QTY": "abc", "COURSE": "Starter"},
        ],
    }
    values.update(overrides)
    return values


def make_dedup_rules() -> list[DedupRule]:
    return [
        DedupRule(
            id="unique-order",
            keys=["NAME", "DELIVERY_DATE"],
            match_mode=MatchMode.CASE_INSENSITIVE,
            message={"en": "This order already exists.", "fr": "Cette commande existe déjà."},
        )
    ]


# =============================================================================
# FOLLOW-UP
# =============================================================================


def make_templates() -> list[Document]:
    pdf = Document(
        id="tpl-pdf",
        name="Order confirmation",
        header=[Paragraph(text="Order {{ORDER_NO}}")],
        body=[
            Paragraph(text="Customer: {{NAME}} ({{LABEL(NAME)}})"),
            Table(
                rows=[
                    TableRow(cells=["{{LABEL(ITEMS.DISH)}}", "{{LABEL(ITEMS.QTY)}}"]),
                    TableRow(cells=["{{ITEMS.DISH}}", "{{ITEMS.QTY}}"]),
                    TableRow(cells=["Total", "{{SUM(ITEMS.QTY)}}"]),
                ]
            ),
            Paragraph(text="Allergens: {{CONSOLIDATED(ITEMS.ING.ALLERGEN)}}"),
        ],
        footer=[Paragraph(text="{{MEAL.CHEF}}")],
    )
    dynamic = Document(id="bundle:invoice.pdf.html", body=[Paragraph(text="Invoice for {{NAME}}")])
    mail_en = Document(id="tpl-mail-en", body=[Paragraph(text="Hello {{NAME}}, your order is attached.")])
    mail_fr = Document(id="tpl-mail-fr", body=[Paragraph(text="Bonjour {{NAME}}, votre commande est jointe.")])
    return [pdf, dynamic, mail_en, mail_fr]


def make_followup(**overrides) -> FollowupConfig:
    config = FollowupConfig(
        pdf_template="tpl-pdf",
        email_template={"EN": "tpl-mail-en", "FR": "tpl-mail-fr"},
        email_subject={"EN": "Your order {{ORDER_NO}}", "FR": "Votre commande {{ORDER_NO}}"},
        to=["{{EMAIL}}"],
        cc=[
            RecipientLookup(
                source="Meals",
                record_field="MEAL",
                lookup_column="Name",
                value_column="Chef",
                fallback="kitchen@example.com",
            )
        ],
        status=StatusTransitions(on_pdf="PDF ready", on_email={"EN": "Sent", "FR": "Envoyé"}),
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config
