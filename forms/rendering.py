"""HTML rendering for the expense form card"""
from datetime import datetime
from html import escape
from typing import List

from forms.expense_form import LISTING_PATH, ExpenseForm
from forms.feedback import Toast
from forms.rules import parse_date

CATEGORY_LABELS = {
    "decor": "Decoration",
    "catering": "Catering",
    "labor": "Labor",
    "misc": "Miscellaneous",
}


def _date_input_value(value) -> str:
    if value in (None, ""):
        return ""
    try:
        parsed = value if isinstance(value, datetime) else parse_date(value)
    except ValueError:
        return escape(str(value))
    return parsed.strftime("%Y-%m-%d")


def render_toasts(toasts: List[Toast]) -> str:
    if not toasts:
        return ""
    items = "".join(
        f'<div class="toast toast-{escape(t.variant)}" role="status">'
        f"<strong>{escape(t.title)}</strong> <span>{escape(t.description)}</span></div>"
        for t in toasts
    )
    return f'<div class="toasts">{items}</div>'


def _field(form: ExpenseForm, name: str, label: str, control: str, help_text: str) -> str:
    error = form.errors.get(name)
    message = f'<p class="field-error">{escape(error)}</p>' if error else ""
    return (
        f'<div class="field{" has-error" if error else ""}">'
        f'<label for="{name}">{escape(label)}</label>{control}'
        f'<p class="field-help">{escape(help_text)}</p>{message}</div>'
    )


def render_expense_form(form: ExpenseForm, action_url: str) -> str:
    """Renders the form card; every field with an error is highlighted."""
    values = form.values

    def css(name: str) -> str:
        return ' class="error"' if name in form.errors else ""

    description = (
        f'<textarea id="description" name="description"{css("description")} '
        f'placeholder="Detailed description of the expense...">{escape(str(values.get("description") or ""))}</textarea>'
    )
    amount = (
        f'<input id="amount" name="amount" type="number" step="0.01" placeholder="5000"{css("amount")} '
        f'value="{escape(str(values.get("amount", "")))}">'
    )
    current_category = str(getattr(values.get("category"), "value", values.get("category")) or "")
    options = "".join(
        f'<option value="{value}"{" selected" if value == current_category else ""}>{label}</option>'
        for value, label in CATEGORY_LABELS.items()
    )
    category = f'<select id="category" name="category"{css("category")}>{options}</select>'
    date = f'<input id="date" name="date" type="date"{css("date")} value="{_date_input_value(values.get("date"))}">'
    added_by = (
        f'<input id="addedBy" name="addedBy" placeholder="John Doe" readonly{css("addedBy")} '
        f'value="{escape(str(values.get("addedBy") or ""))}">'
    )

    disabled = " disabled" if form.submit_disabled else ""
    return f"""
<div class="card">
  <div class="card-header">
    <h2>{escape(form.title)}</h2>
    <p class="muted">{escape(form.subtitle)}</p>
  </div>
  <form method="post" action="{escape(action_url)}" novalidate>
    <div class="card-content">
      {_field(form, "description", "Description", description, "Detailed description of the expense")}
      <div class="grid">
        {_field(form, "amount", "Amount (₹)", amount, "Cost of the expense")}
        {_field(form, "category", "Category", category, "Type of expense")}
      </div>
      <div class="grid">
        {_field(form, "date", "Date", date, "When the expense was incurred")}
        {_field(form, "addedBy", "Added By", added_by, "Automatically set to the logged-in user")}
      </div>
    </div>
    <div class="card-footer">
      <a class="button outline" href="{LISTING_PATH}">Cancel</a>
      <button type="submit"{disabled}>{escape(form.submit_label)}</button>
    </div>
  </form>
</div>
""".strip()
