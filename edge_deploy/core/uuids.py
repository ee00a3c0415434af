"""
Well-known identifiers shared with the rest of the platform.

Services, applications, object classes and permissions are all addressed by
UUID in the directory, the configuration store and the access control service.
"""

NULL_UUID = "00000000-0000-0000-0000-000000000000"


class Service:
    DIRECTORY = "af4a1d66-e6f7-43c4-8a67-0fa3be2b1cf9"
    CONFIGDB = "af15f175-78a0-4e05-97c0-2a0bb82b9f3b"
    AUTHORISATION = "cab2642a-f7d9-42e5-8845-8f35affe1fd4"
    GIT = "7adf4db0-2e7b-4a68-ab9d-376f4c5ce14b"
    EDGE_DEPLOYMENT = "97756c9a-38e6-4238-b78c-3df6f227a6c9"


class App:
    # General object information (display name)
    INFO = "64a8bfa9-7772-45c4-9d1a-9e6290690957"
    # Edge cluster configuration (flux repo, namespace, sealing certificate)
    CLUSTER = "bdb13634-0b3d-4e38-a065-9a2f3b7b1a3c"


class Class:
    EDGE_CLUSTER = "f24d354d-abc1-4e32-98e1-0667b3e40b61"


class Perm:
    CLUSTERS = "1e1989ab-14de-4fa1-8d4f-0e0d1e8d8f47"
    SECRETS = "585e4c0e-6a5b-4b4f-b1ee-2a2c7c3d0b55"
