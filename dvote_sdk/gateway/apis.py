"""
Catalogue of the APIs a DVote Gateway can expose and the methods of each.
"""
from typing import Dict, Iterable, Optional, Tuple

FILE_API_METHODS: Tuple[str, ...] = ("fetchFile", "addFile", "pinList", "pinFile", "unpinFile")

VOTE_API_METHODS: Tuple[str, ...] = (
    "submitEnvelope",
    "getEnvelopeStatus",
    "getEnvelope",
    "getEnvelopeHeight",
    "getProcessKeys",
    "getProcessList",
    "getEnvelopeList",
    "getBlockHeight",
    "getBlockStatus",
    "getResults",
)

CENSUS_API_METHODS: Tuple[str, ...] = (
    "addCensus",
    "addClaim",
    "addClaimBulk",
    "getRoot",
    "genProof",
    "getSize",
    "checkProof",
    "dump",
    "dumpPlain",
    "importDump",
    "publish",
    "importRemote",
)

RESULTS_API_METHODS: Tuple[str, ...] = (
    "getProcListResults",
    "getProcListLiveResults",
    "getResults",
    "getScrutinizerEntities",
)

REGISTRY_API_METHODS: Tuple[str, ...] = (
    "signUp",
    "getEntity",
    "updateEntity",
    "countMembers",
    "listMembers",
    "getMember",
    "updateMember",
    "deleteMembers",
    "generateTokens",
    "exportTokens",
    "importMembers",
    "countTargets",
    "listTargets",
    "getTarget",
    "dumpTarget",
    "dumpCensus",
    "addCensus",
    "updateCensus",
    "getCensus",
    "countCensus",
    "listCensus",
    "deleteCensus",
    "sendValidationLinks",
    "sendVotingLinks",
    "createTag",
    "listTags",
    "deleteTag",
    "addTag",
    "removeTag",
)

# Always available, whatever the Gateway reports
INFO_API_METHODS: Tuple[str, ...] = ("getInfo",)
RAW_API_METHODS: Tuple[str, ...] = ("submitRawTx",)

API_METHODS: Dict[str, Tuple[str, ...]] = {
    "file": FILE_API_METHODS,
    "vote": VOTE_API_METHODS,
    "census": CENSUS_API_METHODS,
    "results": RESULTS_API_METHODS,
    "registry": REGISTRY_API_METHODS,
}

API_NAMES: Tuple[str, ...] = tuple(API_METHODS)


def is_always_available(method: str) -> bool:
    return method in INFO_API_METHODS or method in RAW_API_METHODS


def api_declares(api: str, method: str) -> bool:
    """Whether the named API family includes the method. Unknown APIs declare nothing."""
    return method in API_METHODS.get(api, ())


def is_method_supported(method: Optional[str], supported_apis: Iterable[str]) -> bool:
    """
    Whether a Gateway exposing `supported_apis` can handle `method`.

    Info and raw methods are always accepted.
    """
    if not method or not isinstance(method, str):
        return False
    if is_always_available(method):
        return True
    return any(api_declares(api, method) for api in supported_apis)
