from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from jwt.algorithms import OKPAlgorithm
import json, sys

# Genera un par Ed25519 (EdDSA) en formato JWK para PRIVATE_JWK / PUBLIC_JWK
issuer_did = sys.argv[1] if len(sys.argv) > 1 else "did:web:gecorpid.com"
kid = f"{issuer_did}#key-1"

priv_key = Ed25519PrivateKey.generate()
priv = json.loads(OKPAlgorithm.to_jwk(priv_key))
pub = json.loads(OKPAlgorithm.to_jwk(priv_key.public_key()))
for jwk in (priv, pub):
    jwk.update({"alg": "EdDSA", "use": "sig", "kid": kid})

print("PUBLIC_JWK=" + json.dumps(pub))
print("PRIVATE_JWK=" + json.dumps(priv))
print(f"ISSUER_DID={issuer_did}")
print(f"ISSUER_KID={kid}")
