"""Campus Eats: ordering, discounts and M-Pesa payments for campus cafeterias"""

__version__ = "1.0.0"
