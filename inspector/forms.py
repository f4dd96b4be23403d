# Provides the base Form class and form field classes for building and validating form data.
from django import forms

# Raised by parse_target for missing/malformed/non-http(s) URLs; converted to form errors here.
from .errors import InputError

# normalize_url prepends "https://" when the scheme is missing; parse_target enforces http/https.
from .utils import normalize_url, parse_target


# Page Inspector
class InspectForm(forms.Form):
    """
    A Django form for the URL of the page to inspect.

    Fields:
        u (str): The target URL. A missing scheme defaults to https://.
    """

    u = forms.CharField(
        label="Page URL",
        required=True,
        max_length=2048,
        error_messages={"required": "Missing ?u="},
        widget=forms.TextInput(
            attrs={
                "id": "inspect_url",
                "placeholder": "example.com",
                "autocomplete": "url",
            }
        ),
    )

    def clean_u(self):
        """
        Cleans and validates the target URL.

        - Strips whitespace and prepends https:// when no scheme is given.
        - Rejects URLs that are not absolute http/https URLs with a hostname.

        Returns:
            str: The normalized URL.

        Raises:
            forms.ValidationError: With the same message the proxy endpoint
            answers with ("Invalid URL", "Only http/https allowed").
        """
        url = normalize_url(self.cleaned_data["u"])
        if not url:
            raise forms.ValidationError("Missing ?u=")
        try:
            parse_target(url)
        except InputError as exc:
            raise forms.ValidationError(exc.message)
        return url

    def first_error(self):
        """The first error message, for plain-text responses."""
        for errors in self.errors.values():
            if errors:
                return errors[0]
        return "Invalid URL"
