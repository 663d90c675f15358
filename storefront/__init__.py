"""ZontropaTi storefront: catalog, cart, checkout and back-office over a data gateway."""
