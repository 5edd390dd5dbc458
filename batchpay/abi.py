# Minimal ABIs for the BatchTransferAdmin contract and the ERC-20 calls we make.

BATCH_TRANSFER_ADMIN_ABI = [
    {"name":"batchTransfer","outputs":[],"inputs":[{"name":"token","type":"address"},{"name":"recipients","type":"address[]"},{"name":"amounts","type":"uint256[]"}],"stateMutability":"payable","type":"function"},
    {"name":"admins","outputs":[{"type":"bool"}],"inputs":[{"name":"a","type":"address"}],"stateMutability":"view","type":"function"},
    {"name":"addAdmin","outputs":[],"inputs":[{"name":"admin","type":"address"}],"stateMutability":"nonpayable","type":"function"},
    {"name":"removeAdmin","outputs":[],"inputs":[{"name":"admin","type":"address"}],"stateMutability":"nonpayable","type":"function"},
]

ERC20_ABI = [
    {"name":"decimals","outputs":[{"type":"uint8"}],"inputs":[],"stateMutability":"view","type":"function"},
    {"name":"balanceOf","outputs":[{"type":"uint256"}],"inputs":[{"name":"a","type":"address"}],"stateMutability":"view","type":"function"},
    {"name":"allowance","outputs":[{"type":"uint256"}],"inputs":[{"name":"owner","type":"address"},{"name":"spender","type":"address"}],"stateMutability":"view","type":"function"},
    {"name":"approve","outputs":[{"type":"bool"}],"inputs":[{"name":"spender","type":"address"},{"name":"value","type":"uint256"}],"stateMutability":"nonpayable","type":"function"},
]
