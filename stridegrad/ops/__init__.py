from stridegrad.ops.elemwise import (
    BinaryElemwiseOp,
    OpAdd,
    OpCast,
    OpCastDesc,
    OpCond,
    OpCos,
    OpDiv,
    OpEq,
    OpExp,
    OpGe,
    OpGeq,
    OpLe,
    OpLeq,
    OpLog,
    OpMax,
    OpMin,
    OpMul,
    OpNeg,
    OpNeq,
    OpPow,
    OpReciprocal,
    OpSigmoid,
    OpSin,
    OpSub,
    OpTan,
    OpTanh,
    UnaryElemwiseOp,
)
from stridegrad.ops.factory import OpFactoryDesc, OpFill, OpFillDesc, OpOnes, OpOnesLike, OpZeros, OpZerosLike
from stridegrad.ops.linalg import OpMatMul, OpMatMulDesc
from stridegrad.ops.reduction import OpReduceDesc, OpReduceMax, OpReduceMean, OpReduceMin, OpReduceSum
from stridegrad.ops.shape import (
    OpAxisDesc,
    OpExpand,
    OpExpandDesc,
    OpPermute,
    OpPermuteDesc,
    OpReshape,
    OpReshapeDesc,
    OpSqueeze,
    OpSumTo,
    OpSumToDesc,
    OpUnsqueeze,
)
from stridegrad.ops.slice import (
    OpConcat,
    OpConcatDesc,
    OpGather,
    OpGatherBackward,
    OpGatherBackwardDesc,
    OpGatherDesc,
    OpIndexSelect,
    OpIndexSelectBackward,
    OpIndexSelectBackwardDesc,
    OpIndexSelectDesc,
    OpNarrow,
    OpNarrowBackward,
    OpNarrowBackwardDesc,
    OpNarrowDesc,
    OpSplit,
    OpSplitDesc,
)
