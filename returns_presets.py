# Simple, opinionated growth presets. All are *nominal* long-run estimates (before inflation),
# net of typical platform and fund fees. Pension and ISA can use different presets.
# These are not promises, just sane defaults users can override.

PRESETS = {
    "Global equity (MSCI ACWI)": {"growth": 0.065},
    "FTSE All-Share": {"growth": 0.055},
    "80/20 Global": {"growth": 0.058},
    "60/40 Global": {"growth": 0.050},
    "40/60 Cautious": {"growth": 0.042},
    "Gilts / cash": {"growth": 0.035},
}

# Glide path end points ("age in bonds")
GLIDE_END = {
    "Stay invested": None,
    "De-risk to 60/40": 0.050,
    "De-risk to cautious": 0.042,
}
