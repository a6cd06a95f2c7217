"""
Cart, pricing and order submission.

Each visitor gets a ``ShopSession`` holding their cart, promo and
delivery quote. Totals are computed by ``pricing.compute_total``;
``orders.submit_order`` runs the validate, re-check and submit sequence.
"""
