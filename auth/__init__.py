"""auth/ -- Identity and access core for VerifyHub.

Password hashing, OTP challenges, bearer tokens, the account store, outbound
mail, the account lifecycle service and the FastAPI authentication /
authorization gates.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
