"""ABIs and default deployment addresses for the registry and escrow contracts."""

DEFAULT_REPO_REGISTRY_ADDRESS = "0x3bf06982df5959b3Bf26bA62B46069c42FA002e0"
DEFAULT_BOUNTY_ESCROW_ADDRESS = "0xE865690eCAc3547dA4e87e648F7Fbb10778C6050"

REGISTRY = "registry"
ESCROW = "escrow"


def _fn(name, inputs, outputs, state_mutability="view", payable=False):
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
        "stateMutability": "payable" if payable else state_mutability,
    }


def _event(name, inputs):
    return {
        "type": "event",
        "name": name,
        "anonymous": False,
        "inputs": [{"name": n, "type": t, "indexed": False} for n, t in inputs],
    }


REPO_REGISTRY_ABI = [
    _event(
        "RepoRegistered",
        [("repoId", "uint256"), ("cid", "string"), ("owner", "address"), ("isPublic", "bool")],
    ),
    _event(
        "BountyAssigned",
        [("repoId", "uint256"), ("issueId", "uint256"), ("bounty", "uint256")],
    ),
    _fn("repoCount", [], [("", "uint256")]),
    _fn(
        "getRepo",
        [("_repoId", "uint256")],
        [("", "string"), ("", "address"), ("", "bool"), ("", "uint256[]")],
    ),
    _fn("getIssueBounty", [("_issueId", "uint256")], [("", "uint256")]),
    _fn(
        "registerRepo",
        [("_cid", "string"), ("_isPublic", "bool"), ("_issueIds", "uint256[]")],
        [],
        state_mutability="nonpayable",
    ),
    _fn(
        "assignBounty",
        [("_repoId", "uint256"), ("_issueId", "uint256"), ("_bounty", "uint256")],
        [],
        state_mutability="nonpayable",
    ),
]

BOUNTY_ESCROW_ABI = [
    _event(
        "ProjectDonated",
        [("repoId", "uint256"), ("amount", "uint256"), ("donor", "address")],
    ),
    _event(
        "BountyFunded",
        [("repoId", "uint256"), ("issueId", "uint256"), ("amount", "uint256")],
    ),
    _event(
        "BountyReleased",
        [
            ("repoId", "uint256"),
            ("issueId", "uint256"),
            ("solver", "address"),
            ("amount", "uint256"),
        ],
    ),
    _fn("owner", [], [("", "address")]),
    _fn(
        "getBounty",
        [("_repoId", "uint256"), ("_issueId", "uint256")],
        [("amount", "uint256"), ("paid", "bool")],
    ),
    _fn("getProjectPool", [("_repoId", "uint256")], [("", "uint256")]),
    _fn("donateToProject", [("_repoId", "uint256")], [], payable=True),
    _fn(
        "fundBountyFromPool",
        [("_repoId", "uint256"), ("_issueId", "uint256"), ("_amount", "uint256")],
        [],
        state_mutability="nonpayable",
    ),
    _fn(
        "releaseBounty",
        [("_repoId", "uint256"), ("_issueId", "uint256"), ("_solver", "address")],
        [],
        state_mutability="nonpayable",
    ),
]

# Event name -> contract that emits it
EVENT_SOURCES = {
    "RepoRegistered": REGISTRY,
    "BountyAssigned": REGISTRY,
    "ProjectDonated": ESCROW,
    "BountyFunded": ESCROW,
    "BountyReleased": ESCROW,
}
