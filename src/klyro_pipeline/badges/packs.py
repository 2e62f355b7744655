"""Known badge contracts and win keywords."""

from __future__ import annotations

from web3 import Web3

from klyro_pipeline.chain.networks import Network

# ETHGlobal packs live on optimism mainnet.
ETHGLOBAL_NETWORK = Network.OPT_MAINNET

COMMUNITY_PACKS: dict[str, str] = {
    "OG Pack": "0x37C6fe4049c95f80e18C9cDDaA8481742456520B",
    "Partner Pack": "0x27479dd41a85002F5987B8C7E999ca0e07Dba817",
    "Supporter Pack": "0x5CF3C75E0036f76bB7BE1815F641DDd57Fd54feb",
    "Pioneer Pack": "0x69B4e2BD6D5c5eeeB7E152FB9bc9b6c4364fA410",
    "Builder Pack": "0xe600A7AD9B86A2D949069A6092b7b5a1Dae50e20",
    "Hacker Pack": "0x32382a82d9faDc55f971f33DaEeE5841cfbADbE0",
}

FINALIST_PACKS: dict[str, str] = {
    "ETHGlobal Finalist 2025": "0x75883f9158a11234E5D94DDeDc23F431ce51Aa1d",
    "ETHGlobal Taipei 2025 Finalist": "0xf1F0B74870B946a8Cb96CeD06749036B65f5018B",
    "Agentic Ethereum 2025 Finalist": "0x1Da04F739e4b9Cff65bd8D1Ecb9ADf15Cc093f08",
    "ETHGlobal Bangkok 2025 Finalist": "0x148f46e97fb11e938ef291b72b9a8c858cd3c157",
    "ETHGlobal San Francisco 2025 Finalist": "0x778cca1bd0dd82ac049aecd1fa5f93c3a328954b",
    "ETHGlobal Singapore Finalist": "0xda9d339c9ef58db3e3af9667b1e68feb2815c972",
    "ETHGlobal Singapore 2025 Finalist": "0x44Ebc0A6fA6700931F7a817126aa7BDce41831C4",
    "ETHOnline 2024 Finalist": "0x09c2ffbb99fcccd62cfefc6356bd6846fb30153f",
    "Superhack 2024 Finalist": "0x416784e5fcc0bb1e0d2f172a4ad3b1e937a42544",
    "Brussels 2024 Finalist": "0x2cA7362eE7A3b5532d02FBc5927CA8B213d1c7Ca",
    "Frameworks 2024 Finalist": "0xe8bb0abd672d977acd06b68889bba46643d114a1",
    "Circuit Breaker 2024 Finalist": "0xe2fb6b612a90d38e6183ff8a9323b2a13d9afa5d",
    "LFGHO 2024 Finalist": "0x3c63848388ca9f98403aa5c5c0bb579bdff039bf",
    "StarkHack 2024 Finalist": "0x9e4b7e7bca9389e44b7e7d789fc828819d7ec0a9",
    "HackFS 2024 Finalist": "0x6f06173d2920d1b8a9a523132cfdc1c3debd1e71",
    "ETHGlobal Sydney 2024 Finalist": "0x85052Af96Ce5D90469A13bc69A618dC9a2d49aD6",
    "Scaling Ethereum 2024 Finalist": "0x6f2942E1fb7737ec3d3b29BED92Ff3e73601DcD3",
    "ETHGlobal London 2024 Finalist": "0xa94b0a0ad9485946a771acb89a7927923ddd389f",
}

HACKER_PACK_IMAGE = "https://storage.googleapis.com/ethglobal-api-production/packs/hacker/hacker-pack.jpg"

# Packs whose token metadata carries no usable image.
PACK_IMAGE_OVERRIDES: dict[str, str] = {
    "ETHGlobal Singapore 2025 Finalist": "https://ethglobal.b-cdn.net/packs/singapore2024-finalist/logo/default.jpg",
}

DEVFOLIO_PACKS: dict[str, tuple[Network, str]] = {
    "EthSF Hackathon": (Network.BASE_MAINNET, "0x2cb02ffcad9d09a08a365e7fffd166ebb369318c"),
    "EthDenver 2025": (Network.BASE_MAINNET, "0x7abe24c1568031401b2d0bad7d752779d22b1ffa"),
    "EthIndia 2024": (Network.BASE_MAINNET, "0x49a650e8f1054b556bce815b12eff7dd8d9ee"),
    "Base Around the World Buildathon": (Network.BASE_MAINNET, "0x91f311e31319fe79d6aca4a898cd6a00e12c3d23"),
    "Onchain Summer Buildathon": (Network.BASE_MAINNET, "0x59ca61566c03a7fb8e4280d97bfa2e8e691da3a6"),
    "Arbitrum U-Hack": (Network.ARB_MAINNET, "0x2d06b90ec8a3082adea993d99bc6e354fac78b04"),
    "EthDenver 2024": (Network.ARB_MAINNET, "0x93fd88df3e2a377c0f23bf22c1cfd87047818d20"),
    "EthMumbai": (Network.ARB_MAINNET, "0xc051abb005ccf2eec5836a03f08591c22c2f3273"),
    "EthIndia 2023": (Network.ARB_MAINNET, "0xe34494de41383fbad7d1cdba6730d0e943425701"),
    "Unfold 2023": (Network.ARB_MAINNET, "0x473a55f826b4805c779450a03d8ee7f79727af99"),
    "EthBarcelona": (Network.ARB_MAINNET, "0x861f978a160270c495ff906db24afdb2199dcaf9"),
    "EthMunich": (Network.ARB_MAINNET, "0x020c3a900fdbd33795d709e2b40a1f3510fbe1fc"),
    "Ethernals": (Network.POLYGON_MAINNET, "0x752ceec57492edb08a733284e372362c6d2ea385"),
}

DEVFOLIO_WIN_MARKER = "winner"
IPFS_GATEWAY = "https://ipfs.io/ipfs/"
IPFS_GATEWAY_REPLACEMENT = "https://gateway.pinata.cloud/ipfs/"

# Substring match against a POAP drop name; a known source of false positives.
POAP_WIN_KEYWORDS: tuple[str, ...] = (
    "winner",
    "finalist",
    "win",
    "won",
    "first place",
    "award",
    "1st place",
    "champion",
    "prize",
    "winning",
    "selected",
    "honored",
)


def contract_index(packs: dict[str, str]) -> dict[str, str]:
    """Map lowercase contract address to pack name, skipping malformed addresses."""
    return {addr.lower(): name for name, addr in packs.items() if Web3.is_address(addr.lower())}


def devfolio_by_network() -> dict[Network, dict[str, str]]:
    grouped: dict[Network, dict[str, str]] = {}
    for name, (network, address) in DEVFOLIO_PACKS.items():
        grouped.setdefault(network, {})[name] = address
    return grouped
